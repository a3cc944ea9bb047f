from .account import Account
from .credit import CreditBalance, CreditTransaction

__all__ = [
    "Account",
    "CreditBalance",
    "CreditTransaction",
]
