"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Mailbox connection state per user (tokens encrypted)
- Staged transactions awaiting review, with their edit log
- Fetch attempt audit

Enforces uniqueness on (user_id, source_message_id).
"""

from .sqlite_store import (
    ConnectionRecord,
    DedupeRow,
    EditRecord,
    FetchRunRecord,
    PendingRecord,
    StaleGenerationError,
    StateStore,
)

__all__ = [
    "StateStore",
    "ConnectionRecord",
    "DedupeRow",
    "EditRecord",
    "FetchRunRecord",
    "PendingRecord",
    "StaleGenerationError",
]
