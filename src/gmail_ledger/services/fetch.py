"""
Fetch Coordinator.

One fetch attempt for one user:

1. Resolve a valid access token (refreshing it if needed)
2. Page through message ids matching the transaction query
3. Retrieve, pre-filter and extract messages on a worker pool
4. Drop duplicates (Deduplication Gate)
5. Stage the survivors in a single store transaction

The attempt is all-or-nothing: any provider error, timeout or connection
change means nothing is staged. Message bodies never leave the worker
that extracts them.
"""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Optional, Protocol

from ..config import Config
from ..errors import (
    AuthorizationExpiredError,
    ConnectionChangedError,
    FetchFailedError,
    FetchInProgressError,
    FetchTimeoutError,
    MailboxUnavailableError,
    NotConnectedError,
)
from ..extractors import MessageExtractor, prefilter_reason
from ..gmail_client import GmailAuthError, GmailError, build_query
from ..ledger_client import LedgerClient, LedgerError
from ..schemas.transaction import ExtractedTransaction, RawMessage
from ..state_store import StaleGenerationError, StateStore
from .connection import ConnectionManager
from .dedupe_gate import DeduplicationGate, KnownEvent
from .locks import KeyedLock

logger = logging.getLogger(__name__)

OUTCOME_FILTERED = "filtered"
OUTCOME_UNPARSED = "unparsed"
OUTCOME_PARSED = "parsed"
OUTCOME_CANCELLED = "cancelled"


class Mailbox(Protocol):
    """Read-only mailbox as used by the coordinator (GmailClient)."""

    def list_message_ids(self, query: str, max_results: int = 50) -> list[str]: ...

    def get_message(self, message_id: str) -> RawMessage: ...


MailboxFactory = Callable[[str], Mailbox]


@dataclass
class FetchStats:
    """Counters of one fetch attempt."""

    fetched: int = 0
    filtered: int = 0
    parsed: int = 0
    new: int = 0
    deduped_away: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class _Batch:
    stats: FetchStats = field(default_factory=FetchStats)
    accepted: list[ExtractedTransaction] = field(default_factory=list)


class FetchCoordinator:
    """
    Pulls a user's recent transaction mails into the pending store.

    At most one fetch per user runs at a time; a second concurrent call
    for the same user fails fast with FetchInProgressError.
    """

    def __init__(
        self,
        store: StateStore,
        connections: ConnectionManager,
        mailbox_factory: MailboxFactory,
        extractor: MessageExtractor,
        gate: DeduplicationGate,
        config: Config,
        ledger: Optional[LedgerClient] = None,
        locks: Optional[KeyedLock] = None,
    ):
        """
        Initialize fetch coordinator.

        Args:
            store: State store holding connections and staged records
            connections: Token source for the mailbox
            mailbox_factory: Builds a mailbox client from an access token
            extractor: Pure message -> candidate extractor
            gate: Deduplication gate
            config: Application configuration
            ledger: Ledger client, read back only if dedup.check_ledger is set
            locks: Per-user fetch locks (shared with the scheduler)
        """
        self.store = store
        self.connections = connections
        self.mailbox_factory = mailbox_factory
        self.extractor = extractor
        self.gate = gate
        self.config = config
        self.ledger = ledger
        self.locks = locks or KeyedLock()

    def fetch(
        self,
        user_id: str,
        max_results: Optional[int] = None,
        window_days: Optional[int] = None,
        timeout: Optional[float] = None,
        run_kind: str = "manual",
    ) -> FetchStats:
        """
        Run one fetch attempt.

        Args:
            user_id: Owner of the mailbox
            max_results: Cap on messages (default fetch.max_results)
            window_days: Look-back window (default fetch.window_days)
            timeout: Whole-attempt time box in seconds (default fetch.timeout_seconds)
            run_kind: Audit label ("manual" or "scheduled")

        Returns:
            FetchStats; new == 0 means nothing new, not failure

        Raises:
            NotConnectedError: User has no active connection
            FetchInProgressError: Another fetch for this user is running
            AuthorizationExpiredError: Grant unusable, re-consent required
            MailboxUnavailableError: Provider or network failure
            FetchTimeoutError: Time box exceeded
            ConnectionChangedError: Connection revoked/replaced mid-fetch
        """
        if not self.locks.try_acquire(user_id):
            raise FetchInProgressError(user_id)
        try:
            return self._fetch_locked(
                user_id,
                max_results if max_results is not None else self.config.fetch.max_results,
                window_days if window_days is not None else self.config.fetch.window_days,
                timeout if timeout is not None else self.config.fetch.timeout_seconds,
                run_kind,
            )
        finally:
            self.locks.release(user_id)

    def _fetch_locked(
        self,
        user_id: str,
        max_results: int,
        window_days: int,
        timeout: float,
        run_kind: str,
    ) -> FetchStats:
        record = self.store.get_connection(user_id)
        if record is None or not record.connected:
            raise NotConnectedError(user_id)

        run_id = self.store.start_fetch_run(user_id, run_kind)
        logger.info(
            f"Fetch started for user {user_id} "
            f"(window={window_days}d, max={max_results}, timeout={timeout}s)"
        )

        cancel = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fetch")
        try:
            grant = self.connections.get_access_token(user_id)
            since = date.today() - timedelta(days=window_days)
            future = executor.submit(
                self._collect, user_id, grant.access_token, since, max_results, cancel
            )
            try:
                batch = future.result(timeout=timeout)
            except FuturesTimeoutError:
                cancel.set()
                raise FetchTimeoutError(f"Fetch exceeded {timeout}s time box")

            try:
                inserted = self.store.stage_candidates(user_id, batch.accepted, grant.generation)
            except StaleGenerationError:
                raise ConnectionChangedError(user_id)

        except NotConnectedError:
            self.store.finish_fetch_run(run_id, "failed", error="not connected")
            raise
        except ConnectionChangedError as e:
            self.store.finish_fetch_run(run_id, "discarded", error=str(e))
            logger.warning(str(e))
            raise
        except GmailAuthError as e:
            raise self._fail(
                user_id, run_id, AuthorizationExpiredError(f"Mailbox rejected access: {e.message}")
            ) from e
        except GmailError as e:
            raise self._fail(user_id, run_id, MailboxUnavailableError(str(e))) from e
        except FetchFailedError as e:
            raise self._fail(user_id, run_id, e)
        except Exception as e:
            raise self._fail(
                user_id, run_id, MailboxUnavailableError(f"Unexpected fetch failure: {e}")
            ) from e
        finally:
            executor.shutdown(wait=False)

        stats = batch.stats
        # UNIQUE(user_id, source_message_id) hits count as deduped too
        stats.deduped_away += len(batch.accepted) - len(inserted)
        stats.new = len(inserted)

        self.store.record_fetch_success(user_id)
        self.store.finish_fetch_run(run_id, "success", stats.to_dict())
        logger.info(
            f"Fetch finished for user {user_id}: fetched={stats.fetched} "
            f"filtered={stats.filtered} parsed={stats.parsed} new={stats.new} "
            f"deduped={stats.deduped_away}"
        )
        return stats

    def _fail(self, user_id: str, run_id: int, error: FetchFailedError) -> FetchFailedError:
        """Record a failed attempt and return the error to raise."""
        needs_reauth = isinstance(error, AuthorizationExpiredError)
        self.store.record_fetch_error(user_id, error.kind, str(error), needs_reauth=needs_reauth)
        self.store.finish_fetch_run(run_id, "failed", error_kind=error.kind, error=str(error))
        logger.error(f"Fetch failed for user {user_id} ({error.kind}): {error}")
        return error

    def _collect(
        self,
        user_id: str,
        access_token: str,
        since: date,
        max_results: int,
        cancel: threading.Event,
    ) -> _Batch:
        """List, retrieve, extract and deduplicate (no writes)."""
        mailbox = self.mailbox_factory(access_token)
        query = build_query(
            since, self.config.gmail.allowed_sender_patterns, self.config.gmail.subject_keywords
        )
        message_ids = mailbox.list_message_ids(query, max_results)

        batch = _Batch()
        batch.stats.fetched = len(message_ids)
        candidates: list[ExtractedTransaction] = []

        with ThreadPoolExecutor(
            max_workers=self.config.fetch.extraction_workers, thread_name_prefix="extract"
        ) as pool:
            futures = [pool.submit(self._process, mailbox, mid, cancel) for mid in message_ids]
            try:
                for future in futures:
                    outcome, candidate = future.result()
                    if outcome == OUTCOME_FILTERED:
                        batch.stats.filtered += 1
                    elif outcome == OUTCOME_PARSED and candidate is not None:
                        batch.stats.parsed += 1
                        candidates.append(candidate)
            except BaseException:
                cancel.set()
                for future in futures:
                    future.cancel()
                raise

        if cancel.is_set():
            return batch

        result = self.gate.filter_new(
            candidates,
            self.store.get_dedupe_rows(user_id),
            self._ledger_events(user_id, since),
        )
        batch.accepted = result.accepted
        batch.stats.deduped_away = result.deduped_away
        return batch

    def _process(
        self, mailbox: Mailbox, message_id: str, cancel: threading.Event
    ) -> tuple[str, Optional[ExtractedTransaction]]:
        """Retrieve and extract one message. The RawMessage dies here."""
        if cancel.is_set():
            return OUTCOME_CANCELLED, None

        message = mailbox.get_message(message_id)
        reason = prefilter_reason(message.subject, message.body)
        if reason:
            logger.debug(f"Filtered message {message_id}: {reason}")
            return OUTCOME_FILTERED, None

        candidate = self.extractor.extract(message)
        if candidate is None:
            return OUTCOME_UNPARSED, None
        return OUTCOME_PARSED, candidate

    def _ledger_events(self, user_id: str, since: date) -> list[KnownEvent]:
        if not (self.config.dedup.check_ledger and self.ledger):
            return []
        tolerance = timedelta(days=self.config.dedup.date_tolerance_days)
        try:
            records = self.ledger.entries_between(user_id, since - tolerance, date.today() + tolerance)
        except LedgerError as e:
            # Confirmed rows in the store still guard against re-import
            logger.warning(f"Ledger read-back failed for user {user_id}, skipping: {e}")
            return []
        return [KnownEvent(r.amount, r.direction, r.date) for r in records]
