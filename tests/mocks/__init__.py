"""
Mock utilities for testing the Alset credit ledger.
"""

from .stores import InMemoryCreditStore, FlakyCreditStore
from .lookup import MockPropertyLookup, SAMPLE_ZILLOW_PAYLOAD

__all__ = [
    "InMemoryCreditStore",
    "FlakyCreditStore",
    "MockPropertyLookup",
    "SAMPLE_ZILLOW_PAYLOAD",
]
