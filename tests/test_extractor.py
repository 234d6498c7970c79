"""
Tests for the message extractor.

The fixture corpus (fixtures/sample_emails.json) pins end-to-end extraction
behavior for real notification wording.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from fixtures import RECEIVED_AT, load_cases, make_message, to_message

from gmail_ledger.extractors import MessageExtractor
from gmail_ledger.extractors.message import (
    extract_metadata,
    make_snippet,
    parse_dates,
    resolve_occurred_on,
)
from gmail_ledger.schemas.transaction import Confidence, Direction

CASES = load_cases()


@pytest.fixture
def extractor():
    return MessageExtractor()


class TestFixtureCorpus:
    """Regression cases."""

    @pytest.mark.parametrize("case", CASES, ids=[case["name"] for case in CASES])
    def test_case(self, extractor, case):
        result = extractor.extract(to_message(case["message"]))
        expected = case["expected"]

        if expected is None:
            assert result is None
            return

        assert result is not None
        assert result.amount == Decimal(expected["amount"])
        assert result.currency == expected["currency"]
        assert result.direction == Direction(expected["direction"])
        assert result.vendor == expected["vendor"]
        assert result.category == expected["category"]
        assert result.confidence == Confidence(expected["confidence"])
        assert result.occurred_on == date.fromisoformat(expected["occurred_on"])
        assert result.source_message_id == case["message"]["id"]


class TestExtractorContract:
    """Properties that hold for every extraction."""

    def test_no_amount_returns_none(self, extractor):
        message = make_message("m1", body="Your statement is ready to view.", subject="Statement")
        assert extractor.extract(message) is None

    def test_never_carries_the_body(self, extractor):
        body = "Dear customer, INR 3,450 debited. " + "Lorem ipsum dolor sit amet. " * 40
        result = extractor.extract(make_message("m1", body=body))

        assert not hasattr(result, "body")
        assert len(result.snippet) <= 160
        assert "INR 3,450" in result.snippet
        assert body not in str(result.to_dict())

    def test_snippet_length_configurable(self):
        result = MessageExtractor(snippet_length=40).extract(make_message("m1"))
        assert len(result.snippet) <= 40

    def test_deterministic(self, extractor):
        message = make_message("m1")
        assert extractor.extract(message) == extractor.extract(message)

    def test_defaulted_direction_is_low(self, extractor):
        message = make_message(
            "m1", body="Trip summary: INR 85", subject="Summary", sender="info@example.com"
        )
        result = extractor.extract(message)

        assert result.direction == Direction.DEBIT
        assert result.confidence == Confidence.LOW

    def test_known_vendor_without_cue_is_low(self, extractor):
        message = make_message(
            "m1",
            body="Order #12345 delivered. Order value Rs 450",
            subject="Order Delivered",
            sender="alerts@swiggy.in",
        )
        result = extractor.extract(message)

        assert result.vendor == "Swiggy"
        assert result.direction == Direction.DEBIT
        assert result.confidence == Confidence.LOW

    def test_amount_far_from_any_keyword_is_low(self, extractor):
        message = make_message(
            "m1",
            body="Thanks for your purchase!\n\nItems: 2\nYour order of Rs 450 will arrive soon.",
            subject="Order Placed",
            sender="alerts@swiggy.in",
        )
        result = extractor.extract(message)

        assert result.amount == Decimal("450")
        assert result.direction == Direction.DEBIT
        assert result.confidence == Confidence.LOW

    def test_misspelled_merchant_counts_as_known(self, extractor):
        message = make_message(
            "m1",
            body="Rs 450 paid to Swigy on 05-Dec-23",
            subject="Card Alert",
            sender="alerts@examplebank.com",
        )
        result = extractor.extract(message)

        assert result.vendor == "Swiggy"
        assert result.confidence == Confidence.HIGH

    def test_known_vendor_never_lowers_confidence(self, extractor):
        body = "Rs 1,250 paid for your order"
        unknown = extractor.extract(make_message("m1", body=body, sender="info@example.com"))
        known = extractor.extract(make_message("m2", body=body, sender="orders@swiggy.in"))

        assert unknown.confidence == Confidence.MEDIUM
        assert known.confidence == Confidence.HIGH
        assert known.confidence >= unknown.confidence

    def test_metadata_attached(self, extractor):
        case = next(c for c in CASES if c["name"] == "upi_credit")
        result = extractor.extract(to_message(case["message"]))

        assert result.metadata.payment_method == "UPI"
        assert result.metadata.vpa == "friend@okaxis"
        assert result.metadata.reference_id == "UPI123456"

    def test_raw_message_repr_hides_body(self):
        message = make_message("m1")
        assert "BigBasket order" not in repr(message)


class TestDates:
    """Occurred-on date resolution."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("on 05-Dec-23.", date(2023, 12, 5)),
            ("on 05-Dec-2023", date(2023, 12, 5)),
            ("on 2023-12-05", date(2023, 12, 5)),
            ("on 05/12/2023", date(2023, 12, 5)),
            ("on 5 Dec 2023", date(2023, 12, 5)),
            ("on Dec 5, 2023", date(2023, 12, 5)),
        ],
    )
    def test_formats(self, text, expected):
        assert [d for _, d in parse_dates(text)] == [expected]

    def test_falls_back_to_arrival(self):
        assert resolve_occurred_on("no date here", RECEIVED_AT) == RECEIVED_AT.date()

    def test_implausible_date_ignored(self):
        """Dates after arrival (e.g., a due date) are skipped."""
        text = "Paid on 10-Dec-23. Next renewal on 10-Jan-24."
        received = datetime(2023, 12, 11, tzinfo=timezone.utc)
        assert resolve_occurred_on(text, received) == date(2023, 12, 10)

        text = "Next renewal on 10-Jan-24."
        assert resolve_occurred_on(text, received) == date(2023, 12, 11)


class TestMetadata:
    """Supplementary fields."""

    def test_account_and_method(self):
        metadata = extract_metadata("Rs 1250 withdrawn from ATM on 06-Dec-23. A/C **1234.")

        assert metadata.payment_method == "ATM"
        assert metadata.account_last4 == "1234"

    def test_reference_requires_digit(self):
        assert extract_metadata("Ref: ABCDEFGH").reference_id is None
        assert extract_metadata("UTR: IMPS98765").reference_id == "IMPS98765"

    def test_card_ending(self):
        metadata = extract_metadata("payment for your credit card ending 1234")

        assert metadata.payment_method == "Card"
        assert metadata.account_last4 == "1234"

    def test_snippet_window(self):
        text = "x" * 100 + "Rs 500" + "y" * 100
        snippet = make_snippet(text, 100, 106, 20)

        assert "Rs 500" in snippet
        assert len(snippet) <= 20
