"""
Integration tests for the full pipeline.

Consent -> fetch -> review -> confirm -> revoke through InboxService,
with the mailbox, token endpoint and ledger replaced by in-memory fakes.
"""

from urllib.parse import parse_qs, urlparse

import pytest
from fixtures import load_cases, to_message
from fixtures.fakes import FakeMailbox, MailboxFactory

from gmail_ledger.errors import NotConnectedError, OwnershipError
from gmail_ledger.schemas.transaction import PendingState
from gmail_ledger.services import InboxService


@pytest.fixture
def service(config, store, fake_oauth, fake_ledger) -> InboxService:
    mailbox = FakeMailbox([to_message(case["message"]) for case in load_cases()])
    return InboxService.from_config(
        config,
        store=store,
        mailbox_factory=MailboxFactory(mailbox),
        oauth=fake_oauth,
        ledger=fake_ledger,
    )


def _connect(service: InboxService, user_id: str) -> None:
    url = service.begin_consent(user_id)
    state = parse_qs(urlparse(url).query)["state"][0]
    service.complete_consent(user_id, "auth-code", state)


class TestPipeline:
    def test_fetch_requires_connection(self, service):
        with pytest.raises(NotConnectedError):
            service.fetch("alice")

    def test_full_cycle(self, service, store, fake_ledger):
        _connect(service, "alice")
        assert service.get_connection_status("alice").connected

        stats = service.fetch("alice")
        assert stats.new == 20

        pending = service.list_pending("alice")
        salary = next(r for r in pending if r.vendor == "Salary")
        spotify = next(r for r in pending if r.vendor == "Spotify")
        newest = pending[0]

        service.update_pending("alice", salary.id, category="Salary")
        service.delete_pending("alice", spotify.id)
        result = service.confirm_pending("alice", [salary.id, spotify.id, newest.id])

        assert result.confirmed == [salary.id, newest.id]
        assert [pid for pid, _ in result.skipped] == [spotify.id]
        assert len(fake_ledger.entries) == 2
        assert len(service.list_pending("alice")) == 17

        # Re-running changes nothing: confirmed and deleted stay out
        assert service.fetch("alice").new == 0

        purged = service.revoke("alice")
        assert purged == 18
        states = [r.state for r in store.list_records("alice")]
        assert states == [PendingState.CONFIRMED, PendingState.CONFIRMED]
        assert service.get_connection_status("alice").connected is False

    def test_users_do_not_see_each_other(self, service):
        _connect(service, "alice")
        _connect(service, "bob")
        service.fetch("alice")

        assert service.list_pending("bob") == []
        pending_id = service.list_pending("alice")[0].id
        with pytest.raises(OwnershipError):
            service.update_pending("bob", pending_id, vendor="X")

    def test_scheduler_uses_scheduled_window(self, service, store):
        _connect(service, "alice")

        report = service.scheduler().run_once()

        assert report.synced["alice"].new == 20
        assert store.list_fetch_runs("alice")[0].run_kind == "scheduled"
