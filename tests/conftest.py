"""Test fixtures and utilities."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fixtures.fakes import FakeLedger, FakeMailbox, FakeOAuth, MailboxFactory

from gmail_ledger.config import Config, SecurityConfig
from gmail_ledger.extractors import MessageExtractor
from gmail_ledger.gmail_client import TokenCipher
from gmail_ledger.services import ConnectionManager, DeduplicationGate, FetchCoordinator
from gmail_ledger.state_store import StateStore


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def encryption_key() -> str:
    return TokenCipher.generate_key()


@pytest.fixture
def cipher(encryption_key) -> TokenCipher:
    return TokenCipher(encryption_key)


@pytest.fixture
def config(temp_db, encryption_key) -> Config:
    """Config pointing at the temp database."""
    return Config(
        security=SecurityConfig(encryption_key=encryption_key),
        state_db_path=temp_db,
    )


@pytest.fixture
def fake_oauth() -> FakeOAuth:
    return FakeOAuth()


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def connections(store, fake_oauth, cipher) -> ConnectionManager:
    return ConnectionManager(store, fake_oauth, cipher)


@pytest.fixture
def connect_user(store, cipher):
    """Mark a user connected with valid (unexpired) tokens. Returns the generation."""

    def _connect(user_id: str = "alice", expires_in: timedelta = timedelta(hours=1)) -> int:
        expiry = (datetime.now(timezone.utc) + expires_in).isoformat().replace("+00:00", "Z")
        return store.mark_connected(
            user_id,
            cipher.encrypt(f"access-token-{user_id}"),
            cipher.encrypt(f"refresh-token-{user_id}"),
            expiry,
        )

    return _connect


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox([])


@pytest.fixture
def coordinator(store, connections, mailbox, config, fake_ledger) -> FetchCoordinator:
    """Fetch coordinator wired to the fake mailbox and ledger."""
    return FetchCoordinator(
        store=store,
        connections=connections,
        mailbox_factory=MailboxFactory(mailbox),
        extractor=MessageExtractor(),
        gate=DeduplicationGate(config.dedup.date_tolerance_days),
        config=config,
        ledger=fake_ledger,
    )
