"""
Migration 002: Add extraction metadata columns to pending_transactions.

payment_method, vpa, account_last4 and reference_id help the reviewer
recognize a transaction without opening the original mail.
"""

import sqlite3

VERSION = 2
NAME = "pending_metadata"

COLUMNS = ("payment_method", "vpa", "account_last4", "reference_id")


def upgrade(conn: sqlite3.Connection) -> None:
    """Add metadata columns."""
    cursor = conn.execute("PRAGMA table_info(pending_transactions)")
    existing = {row[1] for row in cursor.fetchall()}

    for column in COLUMNS:
        if column not in existing:
            conn.execute(f"ALTER TABLE pending_transactions ADD COLUMN {column} TEXT")
