"""Tests for the amount normalizer."""

from decimal import Decimal

import pytest

from gmail_ledger.extractors.amount import (
    AmountNormalizer,
    find_amount,
    gap_distance,
    normalize_currency,
    parse_amount,
)


class TestSurfaceForms:
    """Currency markers, positions and digit grouping."""

    @pytest.mark.parametrize(
        "text,amount,currency",
        [
            ("Rs.1,250.00 debited from your account", "1250.00", "INR"),
            ("INR 3,450 debited", "3450", "INR"),
            ("₹150.50 paid for your ride", "150.50", "INR"),
            ("Rs 1,00,000 credited to your account", "100000", "INR"),
            ("1,250 INR paid at the counter", "1250", "INR"),
            ("received 5000 rupees from a friend", "5000", "INR"),
            ("$45.99 charged to your card", "45.99", "USD"),
            ("US$ 20 paid", "20", "USD"),
            ("EUR 30 paid for parking", "30", "EUR"),
            ("£9.99 charged", "9.99", "GBP"),
            ("Amount: 1,234,567.89 USD debited", "1234567.89", "USD"),
        ],
    )
    def test_marked_amounts(self, text, amount, currency):
        """Prefix and suffix markers with Western and Indian grouping."""
        match = find_amount(text)

        assert match is not None
        assert match.amount == Decimal(amount)
        assert match.currency == currency
        assert match.currency_inferred is False

    def test_span_covers_marker(self):
        """Span and raw text include the currency marker."""
        text = "Paid Rs 250 at the store"
        match = find_amount(text)

        assert match.start == 5
        assert text[match.start : match.end] == "Rs 250"
        assert match.raw == "Rs 250"


class TestCandidateSelection:
    """Choosing between several figures."""

    def test_total_beats_tax(self):
        """Keyword binds to the figure it introduces, not the one before the separator."""
        match = find_amount("Subtotal: Rs.500.00, Tax: Rs.99.00, Total: Rs.599.00 on 10-Dec-23.")

        assert match.amount == Decimal("599.00")
        assert match.ambiguous is False
        assert match.keyword_adjacent is True
        assert match.candidates == 3

    def test_short_total_after_tax(self):
        match = find_amount("Tax: Rs.99, Total: Rs.599")
        assert match.amount == Decimal("599")

    def test_keyword_adjacent_flag(self):
        match = find_amount("INR 3,450 debited from your account")
        assert match.keyword_adjacent is True

    def test_payment_wording_qualifies(self):
        match = find_amount("CRED payment of Rs 15000 for your credit card")
        assert match.keyword_adjacent is True

    def test_lone_figure_without_keyword(self):
        match = find_amount("Your order of Rs 450 will arrive soon.")

        assert match.amount == Decimal("450")
        assert match.ambiguous is False
        assert match.keyword_adjacent is False

    def test_balance_dropped_when_other_candidate_exists(self):
        """Available balance is never the transaction amount."""
        match = find_amount("Rs 500 debited from A/C XX1234. Avl Bal Rs 10,000.")

        assert match.amount == Decimal("500")
        assert match.ambiguous is False
        assert match.candidates == 1

    def test_balance_kept_when_alone(self):
        match = find_amount("Avl Bal: Rs 10,000")
        assert match.amount == Decimal("10000")

    def test_unrelated_figures_are_ambiguous(self):
        """No keyword decides: largest wins, flagged ambiguous."""
        match = find_amount("Rs 100 and Rs 200")

        assert match.amount == Decimal("200")
        assert match.ambiguous is True

    def test_repeated_value_is_not_ambiguous(self):
        match = find_amount("Rs 500 debited. Amount: Rs 500")

        assert match.amount == Decimal("500")
        assert match.ambiguous is False

    def test_lone_candidate_is_unambiguous(self):
        match = find_amount("Rs 75 won in a scratch card")
        assert match.ambiguous is False


class TestBareNumbers:
    """Numbers without a currency marker."""

    def test_bare_number_after_keyword_qualifies(self):
        match = find_amount("You have withdrawn 200 from your wallet")

        assert match.amount == Decimal("200")
        assert match.currency == "INR"
        assert match.currency_inferred is True

    def test_bare_number_uses_default_currency(self):
        match = AmountNormalizer(default_currency="EUR").find("Total 42.50 for your order")

        assert match.amount == Decimal("42.50")
        assert match.currency == "EUR"

    def test_bare_number_without_keyword_rejected(self):
        assert find_amount("Your order 4521 has shipped") is None

    def test_marked_beats_bare(self):
        match = find_amount("Total 999 items reviewed. Rs 500 paid")
        assert match.amount == Decimal("500")

    def test_masked_account_never_candidate(self):
        assert find_amount("Amount debited from A/C **1234") is None

    def test_number_glued_to_letters_never_candidate(self):
        assert find_amount("Amount debited for order BB123456") is None

    def test_dates_are_not_amounts(self):
        assert find_amount("Amount debited on 05-12-2023") is None


class TestNoAmount:
    """Nothing qualifies: None, never an exception."""

    @pytest.mark.parametrize("text", ["", "   ", "Your weekly newsletter is here"])
    def test_returns_none(self, text):
        assert find_amount(text) is None


class TestHelpers:
    """Module level helpers."""

    def test_parse_amount_indian_grouping(self):
        assert parse_amount("1,00,000.50") == Decimal("100000.50")

    def test_normalize_currency(self):
        assert normalize_currency("Rs.") == "INR"
        assert normalize_currency("₹") == "INR"
        assert normalize_currency("US$") == "USD"
        assert normalize_currency("xyz") is None

    def test_gap_distance_stretched_by_separator(self):
        assert gap_distance("a  b", 1, 3) == 2
        assert gap_distance("a, b", 1, 3) == 22
