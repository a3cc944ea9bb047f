"""
Application configuration constants and enums.
"""
from enum import Enum


class SearchTier(str, Enum):
    """Price points for a property search."""
    BASIC = "basic"
    SMART = "smart"


class TransactionKind(str, Enum):
    """Credit ledger entry kinds."""
    PURCHASE = "purchase"
    CONSUMPTION = "consumption"
    REFUND = "refund"
    GRANT = "grant"


class AccountRole(str, Enum):
    """Account roles."""
    USER = "user"
    ADMIN = "admin"


# Search tier policy: read-only, never persisted per account
SEARCH_TIER_POLICY = {
    SearchTier.BASIC: {
        "credits_required": 0,
        "features": ["Address geocoding", "Basic property search", "Map display"],
        "description": "Free basic property search with address geocoding",
    },
    SearchTier.SMART: {
        "credits_required": 1,
        "features": [
            "Advanced property data",
            "Market analysis",
            "Property insights",
            "RapidAPI integration",
        ],
        "description": "Premium search with comprehensive property data and market insights",
    },
}

# Ledger reference tables for consumption entries
REFERENCE_TABLE_SEARCH_HISTORY = "search_history"
REFERENCE_TABLE_PINS = "pins"
REFERENCE_TABLE_INTENTS = "intents"

# Reference id of the one-off signup grant
SIGNUP_GRANT_REFERENCE = "signup"
