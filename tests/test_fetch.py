"""Tests for the fetch coordinator (mailbox -> pending store)."""

import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest
import responses
from fixtures import load_cases, make_message, to_message
from fixtures.fakes import FakeMailbox, MailboxFactory

from gmail_ledger.errors import (
    AuthorizationExpiredError,
    ConnectionChangedError,
    FetchInProgressError,
    FetchTimeoutError,
    MailboxUnavailableError,
    NotConnectedError,
)
from gmail_ledger.extractors import MessageExtractor
from gmail_ledger.gmail_client import GmailAuthError, GmailClient, TokenCipher
from gmail_ledger.ledger_client import LedgerConnectionError, LedgerRecord
from gmail_ledger.schemas.transaction import Direction
from gmail_ledger.services import ConnectionManager, DeduplicationGate, FetchCoordinator


@pytest.fixture
def corpus_mailbox(mailbox) -> FakeMailbox:
    """The shared mailbox loaded with every regression case."""
    for case in load_cases():
        message = to_message(case["message"])
        mailbox.messages[message.message_id] = message
        mailbox.order.append(message.message_id)
    return mailbox


def _load(mailbox: FakeMailbox, *messages) -> None:
    for message in messages:
        mailbox.messages[message.message_id] = message
        mailbox.order.append(message.message_id)


class TestFetch:
    """Happy path over the regression corpus."""

    def test_stages_corpus(self, coordinator, corpus_mailbox, store, connect_user):
        connect_user("alice")

        stats = coordinator.fetch("alice")

        # fx-021 repeats fx-001 (same amount, direction and day), fx-022 has no amount
        assert stats.to_dict() == {
            "fetched": 22,
            "filtered": 0,
            "parsed": 21,
            "new": 20,
            "deduped_away": 1,
        }
        pending = store.list_pending("alice")
        assert len(pending) == 20
        assert "fx-021" not in {r.source_message_id for r in pending}

    def test_uses_stored_access_token(self, store, connections, config, connect_user):
        mailbox = FakeMailbox([make_message("m1")])
        factory = MailboxFactory(mailbox)
        coordinator = FetchCoordinator(
            store, connections, factory, MessageExtractor(), DeduplicationGate(), config
        )
        connect_user("alice")

        coordinator.fetch("alice")

        assert factory.tokens == ["access-token-alice"]
        assert mailbox.queries[0].startswith("after:")
        assert "from:alerts" in mailbox.queries[0]

    def test_refreshes_expired_token(self, store, connections, config, connect_user, fake_oauth):
        factory = MailboxFactory(FakeMailbox([make_message("m1")]))
        coordinator = FetchCoordinator(
            store, connections, factory, MessageExtractor(), DeduplicationGate(), config
        )
        connect_user("alice", expires_in=-timedelta(minutes=5))

        coordinator.fetch("alice")

        assert fake_oauth.refreshed == ["refresh-token-alice"]
        assert factory.tokens == ["access-1"]

    def test_refetch_adds_nothing(self, coordinator, corpus_mailbox, store, connect_user):
        connect_user("alice")
        coordinator.fetch("alice")

        stats = coordinator.fetch("alice")

        assert stats.new == 0
        assert stats.deduped_away == 21
        assert len(store.list_pending("alice")) == 20

    def test_deleted_message_not_restaged(self, coordinator, mailbox, store, connect_user):
        connect_user("alice")
        _load(mailbox, make_message("m1"))
        coordinator.fetch("alice")
        pending_id = store.list_pending("alice")[0].id
        store.soft_delete(pending_id, "alice")

        stats = coordinator.fetch("alice")

        assert stats.new == 0
        assert store.list_pending("alice") == []

    def test_prefilter_counts(self, coordinator, mailbox, connect_user):
        connect_user("alice")
        _load(
            mailbox,
            make_message("otp", body="Your OTP for payment of Rs 500 is 482913.", subject="OTP"),
            make_message(
                "failed", body="Your payment of Rs 900 to Swiggy failed.", subject="Payment failed"
            ),
            make_message("m1"),
        )

        stats = coordinator.fetch("alice")

        assert stats.fetched == 3
        assert stats.filtered == 2
        assert stats.parsed == 1
        assert stats.new == 1

    def test_explicit_zero_cap_is_honored(self, coordinator, corpus_mailbox, store, connect_user):
        connect_user("alice")

        stats = coordinator.fetch("alice", max_results=0)

        assert stats.fetched == 0
        assert store.list_pending("alice") == []

    def test_nothing_new_is_not_failure(self, coordinator, store, connect_user):
        connect_user("alice")

        stats = coordinator.fetch("alice")

        assert stats.new == 0
        assert store.get_connection("alice").last_fetch_at is not None

    def test_fetch_run_recorded(self, coordinator, corpus_mailbox, store, connect_user):
        connect_user("alice")
        coordinator.fetch("alice", run_kind="scheduled")

        run = store.list_fetch_runs("alice")[0]
        assert run.status == "success"
        assert run.run_kind == "scheduled"
        assert run.new_count == 20
        assert run.deduped_away == 1

    def test_users_are_isolated(self, coordinator, mailbox, store, connect_user):
        connect_user("alice")
        connect_user("bob")
        _load(mailbox, make_message("m1"))

        coordinator.fetch("alice")
        stats = coordinator.fetch("bob")

        assert stats.new == 1
        assert len(store.list_pending("bob")) == 1


class TestFetchFailures:
    """All-or-nothing failure handling."""

    def test_not_connected(self, coordinator):
        with pytest.raises(NotConnectedError):
            coordinator.fetch("nobody")

    def test_provider_error_stages_nothing(self, coordinator, corpus_mailbox, store, connect_user):
        connect_user("alice")
        corpus_mailbox.fail_on = "fx-010"

        with pytest.raises(MailboxUnavailableError):
            coordinator.fetch("alice")

        assert store.list_pending("alice") == []
        record = store.get_connection("alice")
        assert record.last_error_kind == "network"
        assert record.needs_reauth is False
        assert store.list_fetch_runs("alice")[0].status == "failed"

    def test_rejected_access(self, coordinator, mailbox, store, connect_user):
        connect_user("alice")
        mailbox.list_error = GmailAuthError(status_code=401, message="access token rejected")

        with pytest.raises(AuthorizationExpiredError):
            coordinator.fetch("alice")

        record = store.get_connection("alice")
        assert record.last_error_kind == "authorization"
        assert record.needs_reauth is True
        assert store.list_connected_users() == []

    @responses.activate
    def test_mailbox_html_reply_is_recorded(self, store, connections, config, connect_user):
        responses.add(
            responses.GET,
            "https://gmail.googleapis.com/gmail/v1/users/me/messages",
            body="<html>proxy error</html>",
            status=200,
            content_type="text/html",
        )
        coordinator = FetchCoordinator(
            store, connections, GmailClient, MessageExtractor(), DeduplicationGate(), config
        )
        connect_user("alice")

        with pytest.raises(MailboxUnavailableError):
            coordinator.fetch("alice")

        record = store.get_connection("alice")
        assert record.last_error_kind == "network"
        assert "not JSON" in record.last_error
        assert store.list_fetch_runs("alice")[0].status == "failed"

    def test_unexpected_error_finishes_run(self, coordinator, mailbox, store, connect_user):
        connect_user("alice")
        mailbox.list_error = KeyError("messages")

        with pytest.raises(MailboxUnavailableError):
            coordinator.fetch("alice")

        run = store.list_fetch_runs("alice")[0]
        assert run.status == "failed"
        assert store.get_connection("alice").last_error is not None
        assert not coordinator.locks.is_held("alice")

    def test_unreadable_token_is_authorization_failure(
        self, store, fake_oauth, config, mailbox, connect_user
    ):
        connect_user("alice")
        rekeyed = ConnectionManager(store, fake_oauth, TokenCipher(TokenCipher.generate_key()))
        coordinator = FetchCoordinator(
            store, rekeyed, MailboxFactory(mailbox), MessageExtractor(), DeduplicationGate(), config
        )

        with pytest.raises(AuthorizationExpiredError):
            coordinator.fetch("alice")

        record = store.get_connection("alice")
        assert record.last_error_kind == "authorization"
        assert record.needs_reauth is True

    def test_reauth_required_fails_fast(self, coordinator, mailbox, store, connect_user):
        connect_user("alice")
        store.record_fetch_error("alice", "authorization", "revoked", needs_reauth=True)

        with pytest.raises(AuthorizationExpiredError):
            coordinator.fetch("alice")
        assert mailbox.queries == []

    def test_timeout(self, coordinator, mailbox, store, connect_user):
        connect_user("alice")
        _load(mailbox, make_message("m1"), make_message("m2"))
        mailbox.block = threading.Event()

        try:
            with pytest.raises(FetchTimeoutError):
                coordinator.fetch("alice", timeout=0.2)
        finally:
            mailbox.block.set()

        assert store.list_pending("alice") == []
        assert store.get_connection("alice").last_error_kind == "timeout"

    def test_concurrent_fetch_rejected(self, coordinator, connect_user):
        connect_user("alice")
        assert coordinator.locks.try_acquire("alice")
        try:
            with pytest.raises(FetchInProgressError):
                coordinator.fetch("alice")
        finally:
            coordinator.locks.release("alice")

        coordinator.fetch("alice")

    def test_other_user_not_blocked(self, coordinator, connect_user):
        connect_user("bob")
        coordinator.locks.try_acquire("alice")
        try:
            assert coordinator.fetch("bob").new == 0
        finally:
            coordinator.locks.release("alice")

    def test_revoke_during_fetch_discards_batch(self, store, connections, config, connect_user):
        mailbox = FakeMailbox([make_message("m1")])

        def revoking_factory(access_token):
            connections.revoke("alice")
            return mailbox

        coordinator = FetchCoordinator(
            store, connections, revoking_factory, MessageExtractor(), DeduplicationGate(), config
        )
        connect_user("alice")

        with pytest.raises(ConnectionChangedError):
            coordinator.fetch("alice")

        assert store.list_records("alice") == []
        assert store.list_fetch_runs("alice")[0].status == "discarded"


class TestLedgerDedup:
    """Optional comparison against entries already in the ledger."""

    @pytest.fixture
    def in_ledger(self, fake_ledger):
        fake_ledger.existing.append(
            LedgerRecord(
                id="ledger-9",
                amount=Decimal("3450"),
                direction=Direction.DEBIT,
                date=date(2023, 12, 5),
            )
        )
        return fake_ledger

    def test_ledger_entry_blocks_candidate(self, coordinator, mailbox, config, in_ledger, connect_user):
        config.dedup.check_ledger = True
        connect_user("alice")
        _load(mailbox, make_message("m1"))

        stats = coordinator.fetch("alice", window_days=5000)

        assert stats.new == 0
        assert stats.deduped_away == 1

    def test_ledger_ignored_when_disabled(self, coordinator, mailbox, in_ledger, connect_user):
        connect_user("alice")
        _load(mailbox, make_message("m1"))

        assert coordinator.fetch("alice", window_days=5000).new == 1

    def test_ledger_read_failure_falls_back(
        self, coordinator, mailbox, config, fake_ledger, connect_user, monkeypatch
    ):
        def unreachable(user_id, start, end):
            raise LedgerConnectionError("ledger down")

        monkeypatch.setattr(fake_ledger, "entries_between", unreachable)
        config.dedup.check_ledger = True
        connect_user("alice")
        _load(mailbox, make_message("m1"))

        assert coordinator.fetch("alice").new == 1
