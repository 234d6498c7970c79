"""
Canonical transaction objects (SSOT).

RawMessage is what the mailbox hands us, ExtractedTransaction is the only
thing that survives extraction, and LedgerEntry is what gets promoted.
Every module maps into/out of these.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class Direction(str, Enum):
    """Money leaving (debit) or arriving (credit)."""

    DEBIT = "debit"
    CREDIT = "credit"


class Confidence(str, Enum):
    """
    Discrete reliability label.

    Totally ordered: LOW < MEDIUM < HIGH.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def __lt__(self, other: "Confidence") -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "Confidence") -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: "Confidence") -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: "Confidence") -> bool:
        if not isinstance(other, Confidence):
            return NotImplemented
        return self.rank >= other.rank


_CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}


class PendingState(str, Enum):
    """
    Lifecycle of a staged transaction.

    PENDING -> CONFIRMED and PENDING -> DELETED are the only transitions.
    CONFIRMING is an internal claim held while the ledger write is in flight.
    """

    PENDING = "pending"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    DELETED = "deleted"


@dataclass(frozen=True)
class RawMessage:
    """
    One fetched mailbox item.

    Immutable and transient: it lives only inside the fetch worker that
    extracts it and is never persisted.
    """

    message_id: str
    received_at: datetime
    sender: str
    subject: str
    body: str

    def __repr__(self) -> str:
        # Keep bodies out of logs and tracebacks
        return (
            f"RawMessage(message_id={self.message_id!r}, received_at={self.received_at!r}, "
            f"sender={self.sender!r}, body=<{len(self.body)} chars>)"
        )


@dataclass
class TransactionMetadata:
    """Supplementary details parsed from the notification."""

    payment_method: Optional[str] = None  # UPI, IMPS, NEFT, Card, ATM, ...
    vpa: Optional[str] = None  # UPI virtual payment address
    account_last4: Optional[str] = None
    reference_id: Optional[str] = None


@dataclass
class ExtractedTransaction:
    """
    A parsed-but-unreviewed transaction guess (candidate).

    Invariants: amount > 0, direction and confidence always set.
    Carries a short snippet for the reviewer, never the message body.
    """

    source_message_id: str
    amount: Decimal
    currency: str
    direction: Direction
    vendor: str
    category: str
    occurred_on: date
    confidence: Confidence
    snippet: str = ""
    sender: str = ""
    subject: str = ""
    metadata: TransactionMetadata = field(default_factory=TransactionMetadata)

    def __post_init__(self) -> None:
        if self.amount is None or self.amount <= 0:
            raise ValueError(f"amount must be positive, got: {self.amount}")
        if not self.currency:
            raise ValueError("currency is required")

    def to_dict(self) -> dict:
        """Convert to JSON-friendly dictionary."""
        return {
            "source_message_id": self.source_message_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "direction": self.direction.value,
            "vendor": self.vendor,
            "category": self.category,
            "occurred_on": self.occurred_on.isoformat(),
            "confidence": self.confidence.value,
            "snippet": self.snippet,
            "sender": self.sender,
            "subject": self.subject,
            "metadata": {
                "payment_method": self.metadata.payment_method,
                "vpa": self.metadata.vpa,
                "account_last4": self.metadata.account_last4,
                "reference_id": self.metadata.reference_id,
            },
        }


@dataclass
class LedgerEntry:
    """Finalized record handed to the ledger collaborator."""

    user_id: str
    amount: Decimal
    currency: str
    direction: Direction
    category: str
    vendor: str
    date: date
    description: str
    external_id: str
    payment_method: Optional[str] = None
    reference_id: Optional[str] = None
    source: str = "gmail_import"

    def to_payload(self) -> dict:
        """Ledger API payload (expense for debits, income for credits)."""
        return {
            "user": self.user_id,
            "amount": f"{self.amount:.2f}",
            "currency": self.currency,
            "category": self.category,
            "vendor": self.vendor,
            "date": self.date.isoformat(),
            "description": self.description or f"{self.vendor} transaction",
            "paymentMethod": self.payment_method or "UPI",
            "tags": ["gmail-import"],
            "notes": f"Imported from Gmail. Ref: {self.reference_id or 'N/A'}",
            "externalId": self.external_id,
            "source": self.source,
        }
