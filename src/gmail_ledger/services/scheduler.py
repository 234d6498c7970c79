"""
Scheduled sync of every connected user.

Each tick fetches the short scheduled window for all users with a usable
connection, a bounded number at a time. A tick that starts while the
previous one is still running is skipped, and so is any user whose manual
fetch is in progress.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from ..errors import FetchInProgressError, GmailLedgerError
from ..state_store import StateStore
from .fetch import FetchCoordinator, FetchStats

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one scheduler tick."""

    synced: dict[str, FetchStats] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # user_id -> error kind


class SyncScheduler:
    """Runs fetches for all connected users on an interval."""

    def __init__(
        self,
        coordinator: FetchCoordinator,
        store: StateStore,
        concurrency: int = 5,
        window_days: int = 7,
    ):
        self.coordinator = coordinator
        self.store = store
        self.concurrency = max(1, concurrency)
        self.window_days = window_days
        self._tick_lock = threading.Lock()

    def _sync_user(self, user_id: str) -> tuple[str, Optional[FetchStats], Optional[str]]:
        try:
            stats = self.coordinator.fetch(
                user_id, window_days=self.window_days, run_kind="scheduled"
            )
            return user_id, stats, None
        except FetchInProgressError:
            logger.info(f"Skipping user {user_id}: fetch already in progress")
            return user_id, None, None
        except GmailLedgerError as e:
            # Already recorded on the connection by the coordinator
            return user_id, None, getattr(e, "kind", type(e).__name__)

    def run_once(self) -> Optional[SyncReport]:
        """
        Sync every connected user once.

        Returns:
            SyncReport, or None if a previous tick is still running
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.info("Scheduled sync already running, skipping tick")
            return None

        try:
            users = self.store.list_connected_users()
            report = SyncReport()
            if not users:
                logger.debug("No connected users to sync")
                return report

            logger.info(f"Scheduled sync of {len(users)} users")
            with ThreadPoolExecutor(
                max_workers=self.concurrency, thread_name_prefix="sync"
            ) as pool:
                for user_id, stats, error_kind in pool.map(self._sync_user, users):
                    if stats is not None:
                        report.synced[user_id] = stats
                    elif error_kind is not None:
                        report.failed[user_id] = error_kind
                    else:
                        report.skipped.append(user_id)

            logger.info(
                f"Scheduled sync done: {len(report.synced)} synced, "
                f"{len(report.failed)} failed, {len(report.skipped)} skipped"
            )
            return report
        finally:
            self._tick_lock.release()

    def run_forever(self, stop_event: threading.Event, interval_seconds: float) -> None:
        """Tick until stop_event is set. Waits on the event so shutdown is immediate."""
        logger.info(f"Scheduler starting (interval {interval_seconds}s)")
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Error in scheduled sync: {e}", exc_info=True)
            stop_event.wait(interval_seconds)
        logger.info("Scheduler stopped")
