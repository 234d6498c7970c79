"""
Direction classifier.

Decides whether a notification describes money leaving (debit) or
arriving (credit) from cue words. When both kinds of cue appear, the one
closest to the recognized amount wins.
"""

import re
from dataclasses import dataclass
from typing import Optional

from ..schemas.transaction import Direction

DEBIT_CUES = re.compile(
    r"\b(?:debited|spent|paid|payment|withdrawn|withdrawal|purchased?|sent|charged|renewed)\b",
    re.IGNORECASE,
)
CREDIT_CUES = re.compile(
    r"\b(?:credited\s+back|credited|credit(?!\s+card)|received|deposit(?:ed)?|refund(?:ed)?|"
    r"cash\s?back|salary|dividend|reversed|reversal)\b",
    re.IGNORECASE,
)

# Where the direction came from
SOURCE_CUE = "cue"
SOURCE_DEFAULT = "default"


@dataclass
class DirectionResult:
    """Classified direction plus its provenance."""

    direction: Direction
    source: str = SOURCE_CUE
    cue: Optional[str] = None

    @property
    def defaulted(self) -> bool:
        return self.source == SOURCE_DEFAULT


def _cue_distance(start: int, end: int, span: Optional[tuple[int, int]]) -> int:
    if span is None:
        return start
    amount_start, amount_end = span
    if end <= amount_start:
        return amount_start - end
    if start >= amount_end:
        return start - amount_end
    return 0


def _nearest(pattern: re.Pattern, text: str, span) -> Optional[tuple[int, str]]:
    best = None
    for match in pattern.finditer(text):
        distance = _cue_distance(match.start(), match.end(), span)
        if best is None or distance < best[0]:
            best = (distance, match.group(0).lower())
    return best


def classify_direction(
    text: str,
    amount_span: Optional[tuple[int, int]] = None,
) -> DirectionResult:
    """
    Classify text as debit or credit.

    Args:
        text: Subject and body text
        amount_span: (start, end) of the recognized amount in text

    Returns:
        DirectionResult. With no cue at all the result is a debit with source "default".
    """
    debit = _nearest(DEBIT_CUES, text or "", amount_span)
    credit = _nearest(CREDIT_CUES, text or "", amount_span)

    if debit and credit:
        # Exact tie goes to debit
        if credit[0] < debit[0]:
            return DirectionResult(Direction.CREDIT, SOURCE_CUE, credit[1])
        return DirectionResult(Direction.DEBIT, SOURCE_CUE, debit[1])
    if debit:
        return DirectionResult(Direction.DEBIT, SOURCE_CUE, debit[1])
    if credit:
        return DirectionResult(Direction.CREDIT, SOURCE_CUE, credit[1])

    return DirectionResult(Direction.DEBIT, SOURCE_DEFAULT)
