"""
Confidence scoring implementation.
"""

from dataclasses import dataclass

from ..schemas.transaction import Confidence


@dataclass
class ConfidenceSignals:
    """Signals collected by the extractor for one candidate."""

    amount_unambiguous: bool
    vendor_known: bool
    direction_defaulted: bool = False
    amount_keyword_adjacent: bool = True


class ConfidenceScorer:
    """
    Maps extraction signals to a discrete confidence level.

    Rules:
    - LOW: direction defaulted, amount not next to a qualifying keyword,
      or neither amount nor vendor is reliable
    - HIGH: unambiguous keyword-adjacent amount AND known vendor
    - MEDIUM: exactly one of the two

    Monotone in each signal: recognizing the vendor never lowers the level.
    """

    def score(self, signals: ConfidenceSignals) -> Confidence:
        if signals.direction_defaulted or not signals.amount_keyword_adjacent:
            return Confidence.LOW

        reliable = int(signals.amount_unambiguous) + int(signals.vendor_known)
        if reliable == 2:
            return Confidence.HIGH
        if reliable == 1:
            return Confidence.MEDIUM
        return Confidence.LOW
