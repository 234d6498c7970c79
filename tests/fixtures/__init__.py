"""
Test fixtures for mailbox notifications.

sample_emails.json holds regression cases: a message payload plus the
expected extraction (null when nothing should be extracted). All messages
arrive on RECEIVED_AT unless they say otherwise.
"""

import base64
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

from gmail_ledger.schemas.transaction import (
    Confidence,
    Direction,
    ExtractedTransaction,
    RawMessage,
    TransactionMetadata,
)

FIXTURES_DIR = Path(__file__).parent

RECEIVED_AT = datetime(2023, 12, 23, 9, 0, tzinfo=timezone.utc)


def load_fixture(name: str) -> str:
    """Load a fixture file as string."""
    filepath = FIXTURES_DIR / name
    return filepath.read_text(encoding="utf-8")


def load_cases() -> list[dict]:
    """All regression cases from sample_emails.json."""
    return json.loads(load_fixture("sample_emails.json"))


def to_message(payload: dict) -> RawMessage:
    """Build a RawMessage from a case's message payload."""
    received_at = payload.get("received_at")
    return RawMessage(
        message_id=payload["id"],
        received_at=datetime.fromisoformat(received_at) if received_at else RECEIVED_AT,
        sender=payload.get("sender", ""),
        subject=payload.get("subject", ""),
        body=payload.get("body", ""),
    )


def gmail_payload(message: RawMessage) -> dict:
    """Gmail API `format=full` response for a RawMessage (plain text, base64url)."""
    data = base64.urlsafe_b64encode(message.body.encode("utf-8")).decode("ascii").rstrip("=")
    return {
        "id": message.message_id,
        "internalDate": str(int(message.received_at.timestamp() * 1000)),
        "payload": {
            "mimeType": "text/plain",
            "headers": [
                {"name": "From", "value": f"Notifications <{message.sender}>"},
                {"name": "Subject", "value": message.subject},
            ],
            "body": {"data": data},
        },
    }


SAMPLE_BODY = "Dear customer, INR 3,450 debited from your account for BigBasket order on 05-Dec-23."


def make_message(
    message_id: str,
    body: str = SAMPLE_BODY,
    subject: str = "Payment Confirmation",
    sender: str = "orders@bigbasket.com",
    received_at: datetime = RECEIVED_AT,
) -> RawMessage:
    """RawMessage with BigBasket defaults."""
    return RawMessage(
        message_id=message_id,
        received_at=received_at,
        sender=sender,
        subject=subject,
        body=body,
    )


def make_candidate(
    message_id: str,
    amount: str = "3450",
    direction: Direction = Direction.DEBIT,
    occurred_on: date = date(2023, 12, 5),
    vendor: str = "BigBasket",
    confidence: Confidence = Confidence.HIGH,
) -> ExtractedTransaction:
    """ExtractedTransaction with BigBasket defaults."""
    return ExtractedTransaction(
        source_message_id=message_id,
        amount=Decimal(amount),
        currency="INR",
        direction=direction,
        vendor=vendor,
        category="Groceries",
        occurred_on=occurred_on,
        confidence=confidence,
        snippet="INR 3,450 debited",
        sender="orders@bigbasket.com",
        subject="Payment Confirmation",
        metadata=TransactionMetadata(reference_id="BB123456789"),
    )
