"""
Ledger API Client.

Provides:
- Record confirmed transactions (expenses / income)
- Read back entries in a date range (optional dedup source)

Duplicate externalIds surface as LedgerDuplicateError.
"""

from .client import (
    LedgerAPIError,
    LedgerClient,
    LedgerConnectionError,
    LedgerDuplicateError,
    LedgerError,
    LedgerRecord,
)

__all__ = [
    "LedgerClient",
    "LedgerError",
    "LedgerAPIError",
    "LedgerConnectionError",
    "LedgerDuplicateError",
    "LedgerRecord",
]
