"""
Dedupe key generation (CRITICAL).

This module defines THE deterministic identity functions used by the
deduplication gate and the ledger export. No other module may invent its
own transaction identity.

Identities:
1. Primary key: (user_id, source_message_id). One mailbox message can be
   staged at most once per user, whatever happened to it afterwards.

2. Event key: {amount}|{direction}|{YYYY-MM-DD}
   - amount normalized to 2 decimal places
   - used by the secondary (probable same real-world event) heuristic

3. Ledger external_id: {hash[:16]}:gm:{source_message_id}
   - hash = SHA256(user_id|source_message_id)
   - stable across retries so ledger writes are idempotent
"""

import hashlib
from datetime import date
from decimal import Decimal

# ============================================================================
# SSOT Constants for External ID Generation
# ============================================================================

EXTERNAL_ID_SEPARATOR = ":"

# Marker indicating a Gmail message link
GMAIL_LINK_MARKER = "gm"

HASH_PREFIX_LENGTH = 16


def normalize_amount(amount: Decimal | str | float) -> str:
    """
    Normalize amount to consistent format for hashing.

    Args:
        amount: Amount in various formats

    Returns:
        Normalized amount string with 2 decimal places
    """
    if isinstance(amount, str):
        amount = Decimal(amount.replace(",", ""))
    elif isinstance(amount, float):
        amount = Decimal(str(amount))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, or float, got: {type(amount)}")

    return f"{amount:.2f}"


def compute_event_key(amount: Decimal | str | float, direction: str, occurred_on: date) -> str:
    """
    Key for the secondary heuristic: same amount, direction and calendar day.

    Examples:
        >>> compute_event_key(Decimal("3450"), "debit", date(2023, 12, 5))
        '3450.00|debit|2023-12-05'
    """
    direction_value = getattr(direction, "value", direction)
    return f"{normalize_amount(amount)}|{direction_value}|{occurred_on.isoformat()}"


def compute_message_hash(user_id: str, source_message_id: str) -> str:
    """64-character SHA256 of the primary identity."""
    if not user_id:
        raise ValueError("user_id is required")
    if not source_message_id:
        raise ValueError("source_message_id is required")
    canonical = f"{user_id.strip()}|{source_message_id.strip()}"
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def generate_external_id(user_id: str, source_message_id: str) -> str:
    """
    Generate the deterministic ledger external_id.

    Examples:
        >>> generate_external_id("u1", "18c2f0a9")
        '5b0c...:gm:18c2f0a9'
    """
    hash_prefix = compute_message_hash(user_id, source_message_id)[:HASH_PREFIX_LENGTH]
    return f"{hash_prefix}{EXTERNAL_ID_SEPARATOR}{GMAIL_LINK_MARKER}{EXTERNAL_ID_SEPARATOR}{source_message_id}"


def parse_external_id(external_id: str) -> tuple[str, str]:
    """
    Split an external_id into (hash_prefix, source_message_id).

    Raises:
        ValueError: If the external_id format is invalid
    """
    if not external_id:
        raise ValueError("external_id cannot be empty")

    parts = external_id.split(EXTERNAL_ID_SEPARATOR, 2)
    if len(parts) != 3 or parts[1] != GMAIL_LINK_MARKER:
        raise ValueError(f"Unrecognized external_id format: {external_id[:30]}")
    if len(parts[0]) != HASH_PREFIX_LENGTH:
        raise ValueError(f"Invalid hash length, expected {HASH_PREFIX_LENGTH}, got {len(parts[0])}")
    if not parts[2]:
        raise ValueError("external_id has no message id")

    return parts[0], parts[2]
