"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .dedupe import (
    EXTERNAL_ID_SEPARATOR,
    GMAIL_LINK_MARKER,
    HASH_PREFIX_LENGTH,
    compute_event_key,
    compute_message_hash,
    generate_external_id,
    normalize_amount,
    parse_external_id,
)
from .transaction import (
    Confidence,
    Direction,
    ExtractedTransaction,
    LedgerEntry,
    PendingState,
    RawMessage,
    TransactionMetadata,
)

__all__ = [
    # Transaction objects
    "RawMessage",
    "ExtractedTransaction",
    "TransactionMetadata",
    "LedgerEntry",
    "Direction",
    "Confidence",
    "PendingState",
    # Dedupe
    "EXTERNAL_ID_SEPARATOR",
    "GMAIL_LINK_MARKER",
    "HASH_PREFIX_LENGTH",
    "compute_event_key",
    "compute_message_hash",
    "generate_external_id",
    "normalize_amount",
    "parse_external_id",
]
