"""
SQLite-based state store implementation.

Tables:
- connections: One row per user (connection state, encrypted tokens, generation)
- pending_transactions: Staged candidates and their review state
- pending_edits: Append-only edit log for staged candidates
- fetch_runs: Fetch attempt audit (migration 001)

No table has a column for message bodies.
"""

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from ..schemas.transaction import Confidence, Direction, ExtractedTransaction, PendingState


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class StaleGenerationError(Exception):
    """Connection generation changed between fetch start and commit."""

    pass


@dataclass
class ConnectionRecord:
    """Connection state for one user."""

    user_id: str
    connected: bool
    connected_at: str | None
    last_fetch_at: str | None
    last_error: str | None
    last_error_kind: str | None
    needs_reauth: bool
    access_token_enc: str | None
    refresh_token_enc: str | None
    token_expiry: str | None
    oauth_state: str | None
    code_verifier_enc: str | None
    generation: int
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ConnectionRecord":
        """Create from database row."""
        return cls(
            user_id=row["user_id"],
            connected=bool(row["connected"]),
            connected_at=row["connected_at"],
            last_fetch_at=row["last_fetch_at"],
            last_error=row["last_error"],
            last_error_kind=row["last_error_kind"],
            needs_reauth=bool(row["needs_reauth"]),
            access_token_enc=row["access_token_enc"],
            refresh_token_enc=row["refresh_token_enc"],
            token_expiry=row["token_expiry"],
            oauth_state=row["oauth_state"],
            code_verifier_enc=row["code_verifier_enc"],
            generation=row["generation"],
            updated_at=row["updated_at"],
        )


@dataclass
class EditRecord:
    """One field change made by the reviewer."""

    id: int
    pending_id: int
    field: str
    old_value: str | None
    new_value: str | None
    edited_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "EditRecord":
        return cls(
            id=row["id"],
            pending_id=row["pending_id"],
            field=row["field"],
            old_value=row["old_value"],
            new_value=row["new_value"],
            edited_at=row["edited_at"],
        )


@dataclass
class PendingRecord:
    """A staged transaction (PendingTransaction)."""

    id: int
    user_id: str
    source_message_id: str
    amount: Decimal
    currency: str
    direction: Direction
    vendor: str
    category: str
    occurred_on: date
    confidence: Confidence
    snippet: str
    sender: str
    subject: str
    description: str
    state: PendingState
    ledger_entry_id: str | None
    created_at: str
    updated_at: str
    payment_method: str | None = None
    vpa: str | None = None
    account_last4: str | None = None
    reference_id: str | None = None
    edits: list[EditRecord] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PendingRecord":
        """Create from database row."""
        keys = row.keys()
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            source_message_id=row["source_message_id"],
            amount=Decimal(row["amount"]),
            currency=row["currency"],
            direction=Direction(row["direction"]),
            vendor=row["vendor"],
            category=row["category"],
            occurred_on=date.fromisoformat(row["occurred_on"]),
            confidence=Confidence(row["confidence"]),
            snippet=row["snippet"] or "",
            sender=row["sender"] or "",
            subject=row["subject"] or "",
            description=row["description"] or "",
            state=PendingState(row["state"]),
            ledger_entry_id=row["ledger_entry_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            payment_method=row["payment_method"] if "payment_method" in keys else None,
            vpa=row["vpa"] if "vpa" in keys else None,
            account_last4=row["account_last4"] if "account_last4" in keys else None,
            reference_id=row["reference_id"] if "reference_id" in keys else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view for callers (CLI, API)."""
        return {
            "id": self.id,
            "source_message_id": self.source_message_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "direction": self.direction.value,
            "vendor": self.vendor,
            "category": self.category,
            "occurred_on": self.occurred_on.isoformat(),
            "confidence": self.confidence.value,
            "snippet": self.snippet,
            "description": self.description,
            "state": self.state.value,
            "payment_method": self.payment_method,
            "vpa": self.vpa,
            "account_last4": self.account_last4,
            "reference_id": self.reference_id,
            "ledger_entry_id": self.ledger_entry_id,
        }


@dataclass
class DedupeRow:
    """Identity fields of an existing staged/confirmed record."""

    source_message_id: str
    amount: Decimal
    direction: Direction
    occurred_on: date
    state: PendingState

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DedupeRow":
        return cls(
            source_message_id=row["source_message_id"],
            amount=Decimal(row["amount"]),
            direction=Direction(row["direction"]),
            occurred_on=date.fromisoformat(row["occurred_on"]),
            state=PendingState(row["state"]),
        )


@dataclass
class FetchRunRecord:
    """One fetch attempt."""

    id: int
    user_id: str
    run_kind: str
    started_at: str
    finished_at: str | None
    status: str
    fetched: int
    filtered: int
    parsed: int
    new_count: int
    deduped_away: int
    error_kind: str | None
    error: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "FetchRunRecord":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            run_kind=row["run_kind"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            status=row["status"],
            fetched=row["fetched"],
            filtered=row["filtered"],
            parsed=row["parsed"],
            new_count=row["new_count"],
            deduped_away=row["deduped_away"],
            error_kind=row["error_kind"],
            error=row["error"],
        )


PENDING_COLUMNS = (
    "user_id, source_message_id, amount, currency, direction, vendor, category, "
    "occurred_on, confidence, snippet, sender, subject, description, state, "
    "payment_method, vpa, account_last4, reference_id, created_at, updated_at"
)

EDITABLE_COLUMNS = {"vendor", "category", "amount", "occurred_on", "description"}


class StateStore:
    """
    SQLite-based state store for the pipeline.

    Every state change on a pending record is a conditional update
    (`... WHERE state = 'pending'`), so concurrent confirm/delete calls
    resolve to exactly one winner without holding locks.

    Each method opens its own connection; safe to share across threads.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS connections (
                    user_id TEXT PRIMARY KEY,
                    connected INTEGER NOT NULL DEFAULT 0,
                    connected_at TEXT,
                    last_fetch_at TEXT,
                    last_error TEXT,
                    last_error_kind TEXT,  -- network, authorization, timeout
                    needs_reauth INTEGER NOT NULL DEFAULT 0,
                    access_token_enc TEXT,
                    refresh_token_enc TEXT,
                    token_expiry TEXT,
                    oauth_state TEXT,
                    code_verifier_enc TEXT,
                    generation INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    source_message_id TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    vendor TEXT NOT NULL,
                    category TEXT NOT NULL,
                    occurred_on TEXT NOT NULL,
                    confidence TEXT NOT NULL,
                    snippet TEXT,
                    sender TEXT,
                    subject TEXT,
                    description TEXT,
                    state TEXT NOT NULL DEFAULT 'pending',
                    ledger_entry_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, source_message_id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_edits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    pending_id INTEGER NOT NULL,
                    field TEXT NOT NULL,
                    old_value TEXT,
                    new_value TEXT,
                    edited_at TEXT NOT NULL,
                    FOREIGN KEY (pending_id) REFERENCES pending_transactions(id) ON DELETE CASCADE
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_pending_user_state "
                "ON pending_transactions(user_id, state)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_pending_edits_pending ON pending_edits(pending_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        finally:
            conn.close()

    # Connection methods

    def _ensure_connection_row(self, conn: sqlite3.Connection, user_id: str) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO connections (user_id, updated_at) VALUES (?, ?)",
            (user_id, _now()),
        )

    def get_connection(self, user_id: str) -> ConnectionRecord | None:
        """Get the connection row for a user."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM connections WHERE user_id = ?", (user_id,)
            ).fetchone()
            return ConnectionRecord.from_row(row) if row else None

    def save_consent_request(self, user_id: str, state: str, code_verifier_enc: str) -> None:
        """Remember the CSRF state and PKCE verifier of a started consent."""
        with self._transaction() as conn:
            self._ensure_connection_row(conn, user_id)
            conn.execute(
                """
                UPDATE connections
                SET oauth_state = ?, code_verifier_enc = ?, updated_at = ?
                WHERE user_id = ?
            """,
                (state, code_verifier_enc, _now(), user_id),
            )

    def clear_consent_request(self, user_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE connections
                SET oauth_state = NULL, code_verifier_enc = NULL, updated_at = ?
                WHERE user_id = ?
            """,
                (_now(), user_id),
            )

    def mark_connected(
        self,
        user_id: str,
        access_token_enc: str,
        refresh_token_enc: str | None,
        token_expiry: str | None,
    ) -> int:
        """
        Store a fresh grant and bump the connection generation.

        Returns the new generation.
        """
        now = _now()
        with self._transaction() as conn:
            self._ensure_connection_row(conn, user_id)
            conn.execute(
                """
                UPDATE connections
                SET connected = 1, connected_at = ?, access_token_enc = ?,
                    refresh_token_enc = COALESCE(?, refresh_token_enc), token_expiry = ?,
                    oauth_state = NULL, code_verifier_enc = NULL,
                    last_error = NULL, last_error_kind = NULL, needs_reauth = 0,
                    generation = generation + 1, updated_at = ?
                WHERE user_id = ?
            """,
                (now, access_token_enc, refresh_token_enc, token_expiry, now, user_id),
            )
            row = conn.execute(
                "SELECT generation FROM connections WHERE user_id = ?", (user_id,)
            ).fetchone()
            return row["generation"]

    def update_tokens(
        self,
        user_id: str,
        access_token_enc: str,
        token_expiry: str | None,
        refresh_token_enc: str | None = None,
    ) -> None:
        """Persist refreshed tokens (refresh token only if rotated)."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE connections
                SET access_token_enc = ?, token_expiry = ?,
                    refresh_token_enc = COALESCE(?, refresh_token_enc), updated_at = ?
                WHERE user_id = ? AND connected = 1
            """,
                (access_token_enc, token_expiry, refresh_token_enc, _now(), user_id),
            )

    def record_fetch_success(self, user_id: str) -> None:
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE connections
                SET last_fetch_at = ?, last_error = NULL, last_error_kind = NULL, updated_at = ?
                WHERE user_id = ?
            """,
                (now, now, user_id),
            )

    def record_fetch_error(
        self, user_id: str, kind: str, message: str, needs_reauth: bool = False
    ) -> None:
        """Record a failed fetch attempt on the connection row."""
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE connections
                SET last_error = ?, last_error_kind = ?,
                    needs_reauth = CASE WHEN ? THEN 1 ELSE needs_reauth END,
                    updated_at = ?
                WHERE user_id = ?
            """,
                (message[:500], kind, needs_reauth, _now(), user_id),
            )

    def list_connected_users(self) -> list[str]:
        """Users with an active connection that does not need re-consent."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT user_id FROM connections
                WHERE connected = 1 AND needs_reauth = 0
                ORDER BY user_id
            """
            ).fetchall()
            return [row["user_id"] for row in rows]

    def purge_and_disconnect(self, user_id: str) -> int:
        """
        Drop every non-confirmed record and reset the connection in one transaction.

        Confirmed rows are kept. Bumps the generation so in-flight fetches
        discard their batch. Returns the number of purged records.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                DELETE FROM pending_edits WHERE pending_id IN (
                    SELECT id FROM pending_transactions
                    WHERE user_id = ? AND state != ?
                )
            """,
                (user_id, PendingState.CONFIRMED.value),
            )
            cursor = conn.execute(
                "DELETE FROM pending_transactions WHERE user_id = ? AND state != ?",
                (user_id, PendingState.CONFIRMED.value),
            )
            purged = cursor.rowcount
            conn.execute(
                """
                UPDATE connections
                SET connected = 0, access_token_enc = NULL, refresh_token_enc = NULL,
                    token_expiry = NULL, oauth_state = NULL, code_verifier_enc = NULL,
                    last_error = NULL, last_error_kind = NULL, needs_reauth = 0,
                    generation = generation + 1, updated_at = ?
                WHERE user_id = ?
            """,
                (_now(), user_id),
            )
            return purged

    # Pending methods

    def stage_candidates(
        self,
        user_id: str,
        candidates: Iterable[ExtractedTransaction],
        expected_generation: int,
    ) -> list[int]:
        """
        Insert a deduplicated batch atomically.

        Raises:
            StaleGenerationError: Connection was revoked or replaced since the
                fetch started. Nothing is written.

        Returns ids of inserted rows. Rows hitting UNIQUE(user_id,
        source_message_id) are skipped.
        """
        now = _now()
        inserted: list[int] = []
        with self._transaction() as conn:
            # Take the write lock before checking the generation
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT connected, generation FROM connections WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row is None or not row["connected"] or row["generation"] != expected_generation:
                raise StaleGenerationError(user_id)

            for candidate in candidates:
                metadata = candidate.metadata
                cursor = conn.execute(
                    f"""
                    INSERT OR IGNORE INTO pending_transactions ({PENDING_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        user_id,
                        candidate.source_message_id,
                        str(candidate.amount),
                        candidate.currency,
                        candidate.direction.value,
                        candidate.vendor,
                        candidate.category,
                        candidate.occurred_on.isoformat(),
                        candidate.confidence.value,
                        candidate.snippet,
                        candidate.sender,
                        candidate.subject,
                        candidate.subject,
                        PendingState.PENDING.value,
                        metadata.payment_method,
                        metadata.vpa,
                        metadata.account_last4,
                        metadata.reference_id,
                        now,
                        now,
                    ),
                )
                if cursor.rowcount == 1:
                    inserted.append(cursor.lastrowid)
        return inserted

    def get_pending(self, pending_id: int, with_edits: bool = False) -> PendingRecord | None:
        """Get a record by id, whatever its state or owner."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM pending_transactions WHERE id = ?", (pending_id,)
            ).fetchone()
            if not row:
                return None
            record = PendingRecord.from_row(row)
            if with_edits:
                record.edits = self._edits(conn, pending_id)
            return record

    def list_pending(self, user_id: str) -> list[PendingRecord]:
        """Records awaiting review, newest occurred-on first."""
        return self.list_records(user_id, [PendingState.PENDING])

    def list_records(
        self, user_id: str, states: Optional[list[PendingState]] = None
    ) -> list[PendingRecord]:
        """Records of a user, optionally filtered by state."""
        query = "SELECT * FROM pending_transactions WHERE user_id = ?"
        params: list[Any] = [user_id]
        if states:
            query += f" AND state IN ({', '.join('?' for _ in states)})"
            params.extend(state.value for state in states)
        query += " ORDER BY occurred_on DESC, id DESC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [PendingRecord.from_row(row) for row in rows]

    def get_dedupe_rows(self, user_id: str) -> list[DedupeRow]:
        """Identity fields of every record the user has (any state)."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT source_message_id, amount, direction, occurred_on, state
                FROM pending_transactions WHERE user_id = ?
            """,
                (user_id,),
            ).fetchall()
            return [DedupeRow.from_row(row) for row in rows]

    def count_by_state(self, user_id: str) -> dict[str, int]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT state, COUNT(*) AS n FROM pending_transactions
                WHERE user_id = ? GROUP BY state
            """,
                (user_id,),
            ).fetchall()
            return {row["state"]: row["n"] for row in rows}

    def apply_edits(self, pending_id: int, user_id: str, changes: dict[str, tuple[Any, Any]]) -> bool:
        """
        Update fields of a pending record and log each change.

        Args:
            changes: column -> (old_value, new_value), values already serialized

        Returns:
            False if the record is no longer pending (nothing written)
        """
        unknown = set(changes) - EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)}")

        now = _now()
        assignments = ", ".join(f"{column} = ?" for column in changes)
        params = [new for _, new in changes.values()]

        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE pending_transactions SET {assignments}, updated_at = ?
                WHERE id = ? AND user_id = ? AND state = ?
            """,
                (*params, now, pending_id, user_id, PendingState.PENDING.value),
            )
            if cursor.rowcount != 1:
                return False

            conn.executemany(
                """
                INSERT INTO pending_edits (pending_id, field, old_value, new_value, edited_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                [
                    (pending_id, column, None if old is None else str(old), None if new is None else str(new), now)
                    for column, (old, new) in changes.items()
                ],
            )
            return True

    def get_edits(self, pending_id: int) -> list[EditRecord]:
        with self._transaction() as conn:
            return self._edits(conn, pending_id)

    def _edits(self, conn: sqlite3.Connection, pending_id: int) -> list[EditRecord]:
        rows = conn.execute(
            "SELECT * FROM pending_edits WHERE pending_id = ? ORDER BY id", (pending_id,)
        ).fetchall()
        return [EditRecord.from_row(row) for row in rows]

    def _transition(
        self,
        pending_id: int,
        from_state: PendingState,
        to_state: PendingState,
        user_id: Optional[str] = None,
        ledger_entry_id: Optional[str] = None,
    ) -> bool:
        query = "UPDATE pending_transactions SET state = ?, updated_at = ?"
        params: list[Any] = [to_state.value, _now()]
        if ledger_entry_id is not None:
            query += ", ledger_entry_id = ?"
            params.append(ledger_entry_id)
        query += " WHERE id = ? AND state = ?"
        params.extend([pending_id, from_state.value])
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)

        with self._transaction() as conn:
            cursor = conn.execute(query, params)
            return cursor.rowcount == 1

    def soft_delete(self, pending_id: int, user_id: str) -> bool:
        """pending -> deleted. False if the record was not pending."""
        return self._transition(pending_id, PendingState.PENDING, PendingState.DELETED, user_id)

    def claim(self, pending_id: int, user_id: str) -> bool:
        """pending -> confirming. Exactly one concurrent caller wins."""
        return self._transition(pending_id, PendingState.PENDING, PendingState.CONFIRMING, user_id)

    def mark_confirmed(self, pending_id: int, ledger_entry_id: str) -> bool:
        """confirming -> confirmed."""
        return self._transition(
            pending_id,
            PendingState.CONFIRMING,
            PendingState.CONFIRMED,
            ledger_entry_id=ledger_entry_id,
        )

    def release_claim(self, pending_id: int) -> bool:
        """confirming -> pending, after a failed ledger write."""
        return self._transition(pending_id, PendingState.CONFIRMING, PendingState.PENDING)

    # Fetch run audit

    def start_fetch_run(self, user_id: str, run_kind: str = "manual") -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO fetch_runs (user_id, run_kind, started_at) VALUES (?, ?, ?)",
                (user_id, run_kind, _now()),
            )
            return cursor.lastrowid or 0

    def finish_fetch_run(
        self,
        run_id: int,
        status: str,
        stats: Optional[dict[str, int]] = None,
        error_kind: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        stats = stats or {}
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE fetch_runs
                SET finished_at = ?, status = ?, fetched = ?, filtered = ?, parsed = ?,
                    new_count = ?, deduped_away = ?, error_kind = ?, error = ?
                WHERE id = ?
            """,
                (
                    _now(),
                    status,
                    stats.get("fetched", 0),
                    stats.get("filtered", 0),
                    stats.get("parsed", 0),
                    stats.get("new", 0),
                    stats.get("deduped_away", 0),
                    error_kind,
                    error[:500] if error else None,
                    run_id,
                ),
            )

    def list_fetch_runs(self, user_id: str, limit: int = 10) -> list[FetchRunRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM fetch_runs WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
            return [FetchRunRecord.from_row(row) for row in rows]
