"""
Message extractor.

Turns one RawMessage into an ExtractedTransaction guess, or None when no
qualified amount exists. Pure: no network, no storage.

The body is read here and nowhere else. Only derived fields and a short
snippet around the amount leave this module.
"""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Optional

from ..confidence.scorer import ConfidenceScorer, ConfidenceSignals
from ..schemas.transaction import ExtractedTransaction, RawMessage, TransactionMetadata
from .amount import AmountNormalizer
from .direction import classify_direction
from .vendor import VendorResolver

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
MONTH_NAME = r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"

# (pattern, group order) where order names the groups as day/month/year
DATE_PATTERNS = [
    # 05-Dec-23, 05-Dec-2023
    (re.compile(rf"\b(\d{{1,2}})[-\s]{MONTH_NAME}[-\s](\d{{4}}|\d{{2}})\b", re.I), "dmy_name"),
    # 2023-12-05
    (re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b"), "ymd"),
    # 05/12/2023, 05-12-2023, 05/12/23
    (re.compile(r"\b(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})\b"), "dmy"),
    # 5 Dec 2023, 5 December, 2023
    (re.compile(rf"\b(\d{{1,2}})\s+{MONTH_NAME},?\s+(\d{{4}})\b", re.I), "dmy_name"),
    # Dec 5, 2023
    (re.compile(rf"\b{MONTH_NAME}\s+(\d{{1,2}}),?\s+(\d{{4}})\b", re.I), "mdy_name"),
]

VPA_PATTERN = re.compile(r"(?<![\w.@-])([\w.-]{2,}@[A-Za-z]{2,})(?![\w.@-])")
ACCOUNT_PATTERNS = [
    re.compile(r"\b(?:a/c|acct|account|card)\b[^\d\n]{0,20}?(\d{4})\b", re.I),
    re.compile(r"\b(?:ending(?:\s+with)?)\s*(\d{4})\b", re.I),
    re.compile(r"(?:[xX]{2,}|\*{2,})(\d{4})\b"),
]
REFERENCE_PATTERN = re.compile(
    r"\b(?:ref(?:erence)?(?:\s*no)?|utr|txn(?:\s*id)?|transaction\s+id|order\s+id|booking\s+id|trip\s+id)\b"
    r"\s*[:#.]?\s*([A-Z0-9][A-Z0-9-]{5,})",
    re.I,
)
PAYMENT_METHODS = [
    ("UPI", re.compile(r"\bupi\b", re.I)),
    ("IMPS", re.compile(r"\bimps\b", re.I)),
    ("NEFT", re.compile(r"\bneft\b", re.I)),
    ("RTGS", re.compile(r"\brtgs\b", re.I)),
    ("ATM", re.compile(r"\batm\b", re.I)),
    ("Card", re.compile(r"\b(?:credit|debit)\s+card\b|\bcard\s+ending\b", re.I)),
    ("Net Banking", re.compile(r"\bnet\s?banking\b", re.I)),
    ("Wallet", re.compile(r"\bwallet\b", re.I)),
]

WHITESPACE = re.compile(r"\s+")


def _build_date(day: int, month: int, year: int) -> Optional[date]:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_dates(text: str) -> list[tuple[int, date]]:
    """All parseable dates in text as (position, date), in text order."""
    found: list[tuple[int, date]] = []
    taken: list[tuple[int, int]] = []

    for pattern, order in DATE_PATTERNS:
        for match in pattern.finditer(text):
            if any(s < match.end() and match.start() < e for s, e in taken):
                continue
            groups = match.groups()
            if order == "dmy_name":
                parsed = _build_date(int(groups[0]), MONTHS[groups[1].lower()], int(groups[2]))
            elif order == "mdy_name":
                parsed = _build_date(int(groups[1]), MONTHS[groups[0].lower()], int(groups[2]))
            elif order == "ymd":
                parsed = _build_date(int(groups[2]), int(groups[1]), int(groups[0]))
            else:
                parsed = _build_date(int(groups[0]), int(groups[1]), int(groups[2]))
            if parsed:
                found.append((match.start(), parsed))
                taken.append((match.start(), match.end()))

    found.sort(key=lambda item: item[0])
    return found


def resolve_occurred_on(text: str, received_at: datetime) -> date:
    """
    First plausible date in text, else the arrival date.

    Plausible: not after arrival + 1 day, not older than a year before it.
    """
    received = received_at.date()
    latest = received + timedelta(days=1)
    earliest = received - timedelta(days=365)

    for _, parsed in parse_dates(text):
        if earliest <= parsed <= latest:
            return parsed
    return received


def extract_metadata(text: str) -> TransactionMetadata:
    """Payment method, VPA, masked account digits and reference id."""
    metadata = TransactionMetadata()

    for method, pattern in PAYMENT_METHODS:
        if pattern.search(text):
            metadata.payment_method = method
            break

    vpa = VPA_PATTERN.search(text)
    if vpa:
        metadata.vpa = vpa.group(1)

    for pattern in ACCOUNT_PATTERNS:
        account = pattern.search(text)
        if account:
            metadata.account_last4 = account.group(1)
            break

    for match in REFERENCE_PATTERN.finditer(text):
        value = match.group(1)
        if any(ch.isdigit() for ch in value):
            metadata.reference_id = value
            break

    return metadata


def make_snippet(text: str, start: int, end: int, length: int) -> str:
    """Whitespace-collapsed window of at most `length` chars around [start, end)."""
    if length <= 0:
        return ""
    pad = max(0, (length - (end - start)) // 2)
    window = text[max(0, start - pad) : end + pad]
    return WHITESPACE.sub(" ", window).strip()[:length]


class MessageExtractor:
    """
    Extract a transaction candidate from one message.

    Combines amount normalizer, direction classifier, vendor resolver and
    confidence scorer. Never raises on uncertain input; the worst outcome
    is a low-confidence guess or None.
    """

    def __init__(
        self,
        default_currency: str = "INR",
        snippet_length: int = 160,
        resolver: Optional[VendorResolver] = None,
        scorer: Optional[ConfidenceScorer] = None,
    ):
        self.normalizer = AmountNormalizer(default_currency=default_currency)
        self.snippet_length = snippet_length
        self.resolver = resolver or VendorResolver()
        self.scorer = scorer or ConfidenceScorer()

    def extract(self, message: RawMessage) -> Optional[ExtractedTransaction]:
        """Return the candidate, or None when no qualified amount is found."""
        subject = message.subject or ""
        text = f"{subject}\n{message.body or ''}"

        match = self.normalizer.find(text)
        if match is None:
            logger.debug(f"No amount in message {message.message_id}")
            return None

        vendor = self.resolver.resolve(message.sender, subject, message.body)
        direction = classify_direction(text, (match.start, match.end))

        confidence = self.scorer.score(
            ConfidenceSignals(
                amount_unambiguous=not match.ambiguous,
                amount_keyword_adjacent=match.keyword_adjacent,
                vendor_known=vendor.known,
                direction_defaulted=direction.defaulted,
            )
        )

        transaction = ExtractedTransaction(
            source_message_id=message.message_id,
            amount=match.amount,
            currency=match.currency,
            direction=direction.direction,
            vendor=vendor.name,
            category=vendor.category,
            occurred_on=resolve_occurred_on(text, message.received_at),
            confidence=confidence,
            snippet=make_snippet(text, match.start, match.end, self.snippet_length),
            sender=message.sender,
            subject=subject,
            metadata=extract_metadata(text),
        )

        logger.debug(
            f"Extracted {message.message_id}: {transaction.direction.value} "
            f"vendor={transaction.vendor} confidence={transaction.confidence.value}"
        )
        return transaction
