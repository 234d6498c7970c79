"""Tests for confidence scoring."""

from itertools import product

import pytest

from gmail_ledger.confidence import ConfidenceScorer, ConfidenceSignals
from gmail_ledger.schemas.transaction import Confidence


class TestConfidenceScorer:
    """Tests for confidence scorer."""

    @pytest.fixture
    def scorer(self):
        return ConfidenceScorer()

    def test_high(self, scorer):
        """Unambiguous amount and known vendor."""
        signals = ConfidenceSignals(amount_unambiguous=True, vendor_known=True)
        assert scorer.score(signals) == Confidence.HIGH

    @pytest.mark.parametrize("amount_ok,vendor_ok", [(True, False), (False, True)])
    def test_medium(self, scorer, amount_ok, vendor_ok):
        """Exactly one reliable signal."""
        signals = ConfidenceSignals(amount_unambiguous=amount_ok, vendor_known=vendor_ok)
        assert scorer.score(signals) == Confidence.MEDIUM

    def test_low_when_both_fall_back(self, scorer):
        signals = ConfidenceSignals(amount_unambiguous=False, vendor_known=False)
        assert scorer.score(signals) == Confidence.LOW

    def test_defaulted_direction_forces_low(self, scorer):
        signals = ConfidenceSignals(
            amount_unambiguous=True, vendor_known=True, direction_defaulted=True
        )
        assert scorer.score(signals) == Confidence.LOW

    def test_amount_without_keyword_forces_low(self, scorer):
        signals = ConfidenceSignals(
            amount_unambiguous=True, vendor_known=True, amount_keyword_adjacent=False
        )
        assert scorer.score(signals) == Confidence.LOW

    def test_vendor_recognition_never_lowers(self, scorer):
        """Monotone in vendor_known for every other combination."""
        for amount_ok, defaulted in product([True, False], repeat=2):
            without = scorer.score(ConfidenceSignals(amount_ok, False, defaulted))
            with_vendor = scorer.score(ConfidenceSignals(amount_ok, True, defaulted))
            assert with_vendor >= without


class TestConfidenceOrder:
    """Confidence is totally ordered."""

    def test_order(self):
        assert Confidence.LOW < Confidence.MEDIUM < Confidence.HIGH
        assert Confidence.HIGH >= Confidence.HIGH
        assert max([Confidence.MEDIUM, Confidence.HIGH, Confidence.LOW]) == Confidence.HIGH
