"""
Configuration management (SSOT).

This module defines ALL configuration for the gmail-ledger pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Only the gmail.readonly scope is ever requested
- OAuth tokens are stored encrypted with security.encryption_key
- Secrets (client_secret, tokens, keys) are never logged
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"

DEFAULT_SENDER_PATTERNS = [
    "alerts",
    "noreply",
    "no-reply",
    "transaction",
    "payments",
    "upi",
]

DEFAULT_SUBJECT_KEYWORDS = [
    "payment",
    "credited",
    "debited",
    "transaction",
]


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class GmailConfig:
    """Google OAuth client and Gmail API settings."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = "http://localhost:8765/oauth/callback"
    # Sender fragments OR'ed into the mailbox search (from:<pattern>)
    allowed_sender_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_SENDER_PATTERNS)
    )
    # Subject words OR'ed into the mailbox search (subject:(...))
    subject_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_SUBJECT_KEYWORDS))
    # Per-request HTTP timeout (seconds)
    timeout_seconds: int = 30
    max_retries: int = 3
    # Message ids requested per list page
    page_size: int = 50


@dataclass
class LedgerConfig:
    """Permanent ledger (finance tracker) API."""

    base_url: str = "http://localhost:5000"
    token: str = ""
    timeout_seconds: int = 30


@dataclass
class FetchConfig:
    """Fetch coordinator and scheduler settings."""

    window_days: int = 30
    max_results: int = 50
    # Whole-attempt time box, independent of the HTTP timeout
    timeout_seconds: int = 120
    extraction_workers: int = 4
    # Scheduled sync looks back a shorter window
    scheduled_window_days: int = 7
    scheduler_concurrency: int = 5
    scheduler_interval_minutes: int = 60


@dataclass
class ExtractionConfig:
    """Extractor defaults."""

    default_currency: str = "INR"
    snippet_length: int = 160


@dataclass
class DedupConfig:
    """Deduplication gate settings."""

    # 0 = same calendar day
    date_tolerance_days: int = 0
    # Also compare against entries already in the ledger
    check_ledger: bool = False


@dataclass
class SecurityConfig:
    """At-rest encryption settings."""

    # Fernet key (urlsafe base64, 32 bytes)
    encryption_key: str = ""


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    gmail: GmailConfig = field(default_factory=GmailConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.gmail.client_id:
            errors.append("gmail.client_id is required")
        if not self.gmail.client_secret:
            errors.append("gmail.client_secret is required")
        if not self.gmail.redirect_uri:
            errors.append("gmail.redirect_uri is required")
        if not self.ledger.base_url:
            errors.append("ledger.base_url is required")
        if not self.security.encryption_key:
            errors.append("security.encryption_key is required (generate with Fernet.generate_key())")

        if self.fetch.window_days <= 0:
            errors.append("fetch.window_days must be positive")
        if self.fetch.max_results <= 0:
            errors.append("fetch.max_results must be positive")
        if self.fetch.timeout_seconds <= 0:
            errors.append("fetch.timeout_seconds must be positive")
        if self.fetch.extraction_workers < 1:
            errors.append("fetch.extraction_workers must be >= 1")
        if self.fetch.scheduler_concurrency < 1:
            errors.append("fetch.scheduler_concurrency must be >= 1")

        if self.dedup.date_tolerance_days < 0:
            errors.append("dedup.date_tolerance_days must be >= 0")
        if self.extraction.snippet_length < 0:
            errors.append("extraction.snippet_length must be >= 0")

        return errors


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigValidationError(f"{name} must be an integer, got: {value!r}")


def _env_list(name: str, default: list[str]) -> list[str]:
    value = os.environ.get(name, "")
    if not value:
        return default
    return [part.strip() for part in value.split(",") if part.strip()]


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - GOOGLE_CLIENT_ID
    - GOOGLE_CLIENT_SECRET
    - GOOGLE_REDIRECT_URI
    - GMAIL_ALLOWED_SENDER_PATTERNS (comma separated)
    - GMAIL_FETCH_WINDOW_DAYS
    - LEDGER_URL
    - LEDGER_TOKEN
    - GMAIL_LEDGER_ENCRYPTION_KEY
    - GMAIL_LEDGER_STATE_DB
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path} must contain a mapping at the top level")

    # Gmail config
    gmail_data = data.get("gmail", {}) or {}
    gmail = GmailConfig(
        client_id=os.environ.get("GOOGLE_CLIENT_ID", gmail_data.get("client_id", "")),
        client_secret=os.environ.get("GOOGLE_CLIENT_SECRET", gmail_data.get("client_secret", "")),
        redirect_uri=os.environ.get(
            "GOOGLE_REDIRECT_URI",
            gmail_data.get("redirect_uri", "http://localhost:8765/oauth/callback"),
        ),
        allowed_sender_patterns=_env_list(
            "GMAIL_ALLOWED_SENDER_PATTERNS",
            gmail_data.get("allowed_sender_patterns", list(DEFAULT_SENDER_PATTERNS)),
        ),
        subject_keywords=gmail_data.get("subject_keywords", list(DEFAULT_SUBJECT_KEYWORDS)),
        timeout_seconds=gmail_data.get("timeout_seconds", 30),
        max_retries=gmail_data.get("max_retries", 3),
        page_size=gmail_data.get("page_size", 50),
    )

    # Ledger config
    ledger_data = data.get("ledger", {}) or {}
    ledger = LedgerConfig(
        base_url=os.environ.get("LEDGER_URL", ledger_data.get("base_url", "http://localhost:5000")),
        token=os.environ.get("LEDGER_TOKEN", ledger_data.get("token", "")),
        timeout_seconds=ledger_data.get("timeout_seconds", 30),
    )

    # Fetch config
    fetch_data = data.get("fetch", {}) or {}
    fetch = FetchConfig(
        window_days=_env_int("GMAIL_FETCH_WINDOW_DAYS", fetch_data.get("window_days", 30)),
        max_results=fetch_data.get("max_results", 50),
        timeout_seconds=fetch_data.get("timeout_seconds", 120),
        extraction_workers=fetch_data.get("extraction_workers", 4),
        scheduled_window_days=fetch_data.get("scheduled_window_days", 7),
        scheduler_concurrency=fetch_data.get("scheduler_concurrency", 5),
        scheduler_interval_minutes=fetch_data.get("scheduler_interval_minutes", 60),
    )

    extraction_data = data.get("extraction", {}) or {}
    extraction = ExtractionConfig(
        default_currency=extraction_data.get("default_currency", "INR"),
        snippet_length=extraction_data.get("snippet_length", 160),
    )

    dedup_data = data.get("dedup", {}) or {}
    dedup = DedupConfig(
        date_tolerance_days=dedup_data.get("date_tolerance_days", 0),
        check_ledger=dedup_data.get("check_ledger", False),
    )

    security_data = data.get("security", {}) or {}
    security = SecurityConfig(
        encryption_key=os.environ.get(
            "GMAIL_LEDGER_ENCRYPTION_KEY", security_data.get("encryption_key", "")
        ),
    )

    # State DB
    state_db = os.environ.get("GMAIL_LEDGER_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        gmail=gmail,
        ledger=ledger,
        fetch=fetch,
        extraction=extraction,
        dedup=dedup,
        security=security,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Gmail -> Ledger Import Configuration
#
# Secrets can also come from the environment:
#   GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, LEDGER_TOKEN,
#   GMAIL_LEDGER_ENCRYPTION_KEY

gmail:
  client_id: "YOUR_GOOGLE_CLIENT_ID"
  client_secret: "YOUR_GOOGLE_CLIENT_SECRET"
  redirect_uri: "http://localhost:8765/oauth/callback"
  allowed_sender_patterns:                 # from:<pattern> terms in the mailbox search
    - alerts
    - noreply
    - no-reply
    - transaction
    - payments
    - upi
  subject_keywords:                        # subject:(...) terms in the mailbox search
    - payment
    - credited
    - debited
    - transaction
  timeout_seconds: 30                      # Per HTTP request
  max_retries: 3
  page_size: 50

ledger:
  base_url: "http://localhost:5000"
  token: "YOUR_LEDGER_TOKEN"
  timeout_seconds: 30

fetch:
  window_days: 30                          # Manual fetch looks back this far
  max_results: 50                          # Cap on messages per fetch
  timeout_seconds: 120                     # Whole fetch attempt time box
  extraction_workers: 4
  scheduled_window_days: 7                 # Scheduled sync looks back this far
  scheduler_concurrency: 5                 # Users synced in parallel
  scheduler_interval_minutes: 60

extraction:
  default_currency: "INR"                  # Used when a bare amount has no marker
  snippet_length: 160                      # Characters kept around the amount

dedup:
  date_tolerance_days: 0                   # 0 = same calendar day
  check_ledger: false                      # Also compare against ledger entries

security:
  encryption_key: ""                       # Fernet key for OAuth tokens at rest

# State database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
