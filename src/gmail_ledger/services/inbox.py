"""
Inbox service: the operations exposed to callers (CLI, API).

Wires the state store, Google clients, extractor, deduplication gate and
ledger client together from one Config.
"""

import logging
from typing import Any, Optional

from ..config import Config
from ..extractors import MessageExtractor
from ..gmail_client import GmailClient, GoogleOAuthClient, TokenCipher
from ..ledger_client import LedgerClient
from ..review import ConfirmResult, ReviewWorkflow
from ..state_store import PendingRecord, StateStore
from .connection import ConnectionManager, ConnectionStatus
from .dedupe_gate import DeduplicationGate
from .fetch import FetchCoordinator, FetchStats, MailboxFactory
from .locks import KeyedLock
from .scheduler import SyncScheduler

logger = logging.getLogger(__name__)


class InboxService:
    """Facade over connection, fetch and review for one deployment."""

    def __init__(
        self,
        config: Config,
        store: StateStore,
        connections: ConnectionManager,
        coordinator: FetchCoordinator,
        review: ReviewWorkflow,
    ):
        self.config = config
        self.store = store
        self.connections = connections
        self.coordinator = coordinator
        self.review = review

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: Optional[StateStore] = None,
        mailbox_factory: Optional[MailboxFactory] = None,
        oauth: Optional[GoogleOAuthClient] = None,
        ledger: Optional[LedgerClient] = None,
    ) -> "InboxService":
        """Build the service graph. Collaborators can be injected for tests."""
        store = store or StateStore(config.state_db_path)
        oauth = oauth or GoogleOAuthClient(
            client_id=config.gmail.client_id,
            client_secret=config.gmail.client_secret,
            redirect_uri=config.gmail.redirect_uri,
            timeout=config.gmail.timeout_seconds,
        )
        ledger = ledger or LedgerClient(
            base_url=config.ledger.base_url,
            token=config.ledger.token,
            timeout=config.ledger.timeout_seconds,
        )
        if mailbox_factory is None:
            gmail = config.gmail

            def mailbox_factory(access_token: str) -> GmailClient:
                return GmailClient(
                    access_token,
                    timeout=gmail.timeout_seconds,
                    max_retries=gmail.max_retries,
                    page_size=gmail.page_size,
                )

        connections = ConnectionManager(store, oauth, TokenCipher(config.security.encryption_key))
        coordinator = FetchCoordinator(
            store=store,
            connections=connections,
            mailbox_factory=mailbox_factory,
            extractor=MessageExtractor(
                default_currency=config.extraction.default_currency,
                snippet_length=config.extraction.snippet_length,
            ),
            gate=DeduplicationGate(config.dedup.date_tolerance_days),
            config=config,
            ledger=ledger,
            locks=KeyedLock(),
        )
        return cls(config, store, connections, coordinator, ReviewWorkflow(store, ledger))

    def scheduler(self) -> SyncScheduler:
        return SyncScheduler(
            self.coordinator,
            self.store,
            concurrency=self.config.fetch.scheduler_concurrency,
            window_days=self.config.fetch.scheduled_window_days,
        )

    # Connection

    def get_connection_status(self, user_id: str) -> ConnectionStatus:
        return self.connections.get_status(user_id)

    def begin_consent(self, user_id: str) -> str:
        return self.connections.begin_consent(user_id)

    def complete_consent(self, user_id: str, code: str, state: str) -> ConnectionStatus:
        return self.connections.complete_consent(user_id, code, state)

    def revoke(self, user_id: str) -> int:
        return self.connections.revoke(user_id)

    # Fetch

    def fetch(
        self,
        user_id: str,
        max_results: Optional[int] = None,
        window_days: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> FetchStats:
        return self.coordinator.fetch(
            user_id, max_results=max_results, window_days=window_days, timeout=timeout
        )

    # Review

    def list_pending(self, user_id: str) -> list[PendingRecord]:
        return self.review.list_pending(user_id)

    def update_pending(self, user_id: str, pending_id: int, **fields: Any) -> PendingRecord:
        return self.review.update_pending(user_id, pending_id, **fields)

    def delete_pending(self, user_id: str, pending_id: int) -> None:
        self.review.delete_pending(user_id, pending_id)

    def confirm_pending(self, user_id: str, pending_ids: list[int]) -> ConfirmResult:
        return self.review.confirm_pending(user_id, pending_ids)
