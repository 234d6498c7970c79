"""
Migration 001: Add fetch_runs table.

One row per fetch attempt (manual or scheduled) with its stats and
outcome. Lets operators tell "nothing new" from "failed" after the fact.
"""

import sqlite3

VERSION = 1
NAME = "fetch_runs"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create fetch_runs table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS fetch_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            run_kind TEXT NOT NULL DEFAULT 'manual',  -- manual, scheduled
            started_at TEXT NOT NULL,
            finished_at TEXT,
            status TEXT NOT NULL DEFAULT 'running',  -- running, success, failed, discarded
            fetched INTEGER DEFAULT 0,
            filtered INTEGER DEFAULT 0,
            parsed INTEGER DEFAULT 0,
            new_count INTEGER DEFAULT 0,
            deduped_away INTEGER DEFAULT 0,
            error_kind TEXT,
            error TEXT
        )
    """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_fetch_runs_user ON fetch_runs(user_id, started_at)")
