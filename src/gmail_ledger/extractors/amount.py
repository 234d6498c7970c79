"""
Amount normalizer.

Finds the most plausible monetary amount in free text.

Supported forms:
- Markers: INR, Rs, Rs., ₹, rupees / USD, US$, $ / EUR, € / GBP, £
- Prefix ("Rs.1,250.00") and suffix ("1,250 INR") positions
- Western (1,234,567) and Indian (12,34,567) grouping, 0-2 decimals

A number without a currency marker only qualifies when a monetary keyword
sits right before it ("withdrawn 200"). Currency-marked candidates always
beat bare ones.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

NUMBER = r"(?:\d{1,3}(?:,\d{2,3})+|\d+)(?:\.\d{1,2})?"

PREFIX_PATTERN = re.compile(
    rf"(?<![A-Za-z])(?P<marker>INR|Rs\.?|US\$|USD|EUR|GBP|₹|\$|€|£)\s{{0,2}}(?P<number>{NUMBER})(?!\d)",
    re.IGNORECASE,
)
SUFFIX_PATTERN = re.compile(
    rf"(?<![\w.,*/])(?P<number>{NUMBER})\s?(?P<marker>INR|USD|EUR|GBP|rupees?|dollars?|euros?)\b",
    re.IGNORECASE,
)
BARE_PATTERN = re.compile(rf"(?<![\w.,*/#-])(?P<number>{NUMBER})(?![\w/:%-])")

CURRENCY_ALIASES = {
    "inr": "INR",
    "rs": "INR",
    "rs.": "INR",
    "₹": "INR",
    "rupee": "INR",
    "rupees": "INR",
    "usd": "USD",
    "us$": "USD",
    "$": "USD",
    "dollar": "USD",
    "dollars": "USD",
    "eur": "EUR",
    "€": "EUR",
    "euro": "EUR",
    "euros": "EUR",
    "gbp": "GBP",
    "£": "GBP",
}

# Keyword right before a bare number that makes it monetary
BARE_QUALIFIER = re.compile(
    r"\b(?:total|amount|amt|paid|payment\s+of|debited|credited|withdrawn|deposit\s+of|"
    r"spent|received|refund\s+of|cashback\s+of|charged|sum\s+of)\b[^\d\n]{0,12}$",
    re.IGNORECASE,
)
BARE_LOOKBEHIND = 40

# Balance / limit figures are never the transaction amount
BALANCE_CONTEXT = re.compile(
    r"\b(?:avl\.?|avail\.?|available|bal\.?|balance|limit|outstanding|min(?:imum)?\s+due)"
    r"[^\d\n]{0,15}$",
    re.IGNORECASE,
)
BALANCE_LOOKBEHIND = 30

# Keywords that point at the transaction amount (rank) or away from it (penalty)
RANKED_KEYWORDS = [
    (re.compile(r"\b(?:grand\s+total|order\s+total|total\s+amount|total|net\s+payable|amount\s+paid|net\s+amount)\b", re.I), 3),
    (re.compile(r"\b(?:debited|credited|paid|withdrawn|spent|charged|received|refund(?:ed)?|deposited|sent)\b", re.I), 2),
]
PENALTY_KEYWORDS = re.compile(
    r"\b(?:sub\s?total|item\s+total|tax|gst|vat|discount|delivery\s+fee|convenience\s+fee|tip)\b",
    re.IGNORECASE,
)
PENALTY_RANK = -1

# Monetary wording that qualifies the chosen figure without ranking it
QUALIFYING_KEYWORDS = re.compile(
    r"\b(?:payment|credit(?!\s+card)|cash\s?back|reversed|reversal|deposit|amount|withdrawal|"
    r"purchase|bill|fare|price)\b",
    re.IGNORECASE,
)

MAX_KEYWORD_GAP = 30
SEPARATOR_PENALTY = 20
SEPARATOR = re.compile(r"[,;|\n]|\.\s")


@dataclass
class AmountMatch:
    """Result of amount normalization."""

    amount: Decimal
    currency: str
    start: int  # span in the searched text, marker included
    end: int
    raw: str
    keyword_adjacent: bool = False
    ambiguous: bool = False
    candidates: int = 1
    currency_inferred: bool = False


@dataclass
class _Candidate:
    amount: Decimal
    currency: Optional[str]
    start: int
    end: int
    raw: str
    rank: int = 0


def parse_amount(number: str) -> Decimal:
    """Parse a grouped number ("1,00,000.50") to Decimal."""
    return Decimal(number.replace(",", ""))


def normalize_currency(marker: str) -> Optional[str]:
    """Map a currency marker to its ISO code."""
    return CURRENCY_ALIASES.get(marker.strip().lower())


def gap_distance(text: str, left_end: int, right_start: int) -> int:
    """Character distance between two spans, stretched by list/sentence separators."""
    gap = text[left_end:right_start]
    distance = len(gap)
    if SEPARATOR.search(gap):
        distance += SEPARATOR_PENALTY
    return distance


class AmountNormalizer:
    """
    Pick the transaction amount out of a notification body.

    Returns None (not an exception) when nothing qualifies.
    """

    def __init__(self, default_currency: str = "INR"):
        self.default_currency = default_currency

    def find(self, text: str) -> Optional[AmountMatch]:
        """Return the most plausible amount in text, or None."""
        if not text or not text.strip():
            return None

        candidates = self._marked_candidates(text)
        inferred = False
        if not candidates:
            candidates = self._bare_candidates(text)
            inferred = True
        if not candidates:
            return None

        # Drop balance / limit figures unless nothing else is left
        non_balance = [c for c in candidates if not self._is_balance(text, c)]
        if non_balance:
            candidates = non_balance

        self._rank_candidates(text, candidates)

        ambiguous = False
        if len(candidates) == 1:
            chosen = candidates[0]
        else:
            best_rank = max(c.rank for c in candidates)
            top = [c for c in candidates if c.rank == best_rank]
            if len({c.amount for c in candidates}) == 1:
                chosen = candidates[0]
            elif best_rank > 0 and len(top) == 1:
                chosen = top[0]
            elif len({c.amount for c in top}) == 1 and best_rank > 0:
                chosen = top[0]
            else:
                # Several equally plausible figures: keep the largest, flag it
                chosen = max(top, key=lambda c: c.amount)
                ambiguous = True

        return AmountMatch(
            amount=chosen.amount,
            currency=chosen.currency or self.default_currency,
            start=chosen.start,
            end=chosen.end,
            raw=chosen.raw,
            keyword_adjacent=chosen.rank > 0 or self._qualified(text, chosen),
            ambiguous=ambiguous,
            candidates=len(candidates),
            currency_inferred=inferred or chosen.currency is None,
        )

    def _marked_candidates(self, text: str) -> list[_Candidate]:
        candidates: list[_Candidate] = []
        for match in PREFIX_PATTERN.finditer(text):
            candidate = self._build(match, text)
            if candidate:
                candidates.append(candidate)

        for match in SUFFIX_PATTERN.finditer(text):
            if any(c.start < match.end() and match.start() < c.end for c in candidates):
                continue
            candidate = self._build(match, text)
            if candidate:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.start)
        return candidates

    def _bare_candidates(self, text: str) -> list[_Candidate]:
        candidates: list[_Candidate] = []
        for match in BARE_PATTERN.finditer(text):
            window = text[max(0, match.start() - BARE_LOOKBEHIND) : match.start()]
            if not BARE_QUALIFIER.search(window):
                continue
            candidate = self._build(match, text)
            if candidate:
                candidates.append(candidate)
        return candidates

    def _build(self, match: re.Match, text: str) -> Optional[_Candidate]:
        try:
            amount = parse_amount(match.group("number"))
        except InvalidOperation:
            return None
        if amount <= 0:
            return None

        marker = match.groupdict().get("marker")
        currency = normalize_currency(marker) if marker else None
        return _Candidate(
            amount=amount,
            currency=currency,
            start=match.start(),
            end=match.end(),
            raw=match.group(0),
        )

    def _qualified(self, text: str, candidate: _Candidate) -> bool:
        for match in QUALIFYING_KEYWORDS.finditer(text):
            if match.end() <= candidate.start:
                distance = gap_distance(text, match.end(), candidate.start)
            elif match.start() >= candidate.end:
                distance = gap_distance(text, candidate.end, match.start())
            else:
                continue
            if distance <= MAX_KEYWORD_GAP:
                return True
        return False

    def _is_balance(self, text: str, candidate: _Candidate) -> bool:
        window = text[max(0, candidate.start - BALANCE_LOOKBEHIND) : candidate.start]
        return bool(BALANCE_CONTEXT.search(window))

    def _rank_candidates(self, text: str, candidates: list[_Candidate]) -> None:
        """Attach each keyword to its nearest candidate and keep the best rank per candidate."""
        penalty_spans = [(m.start(), m.end()) for m in PENALTY_KEYWORDS.finditer(text)]

        positive: dict[int, int] = {}
        penalized: set[int] = set()

        for start, end in penalty_spans:
            index = self._nearest(text, candidates, start, end)
            if index is not None:
                penalized.add(index)

        for pattern, rank in RANKED_KEYWORDS:
            for match in pattern.finditer(text):
                if any(s < match.end() and match.start() < e for s, e in penalty_spans):
                    continue
                index = self._nearest(text, candidates, match.start(), match.end())
                if index is not None:
                    positive[index] = max(positive.get(index, 0), rank)

        for index, candidate in enumerate(candidates):
            if index in positive:
                candidate.rank = positive[index]
            elif index in penalized:
                candidate.rank = PENALTY_RANK
            else:
                candidate.rank = 0

    def _nearest(
        self, text: str, candidates: list[_Candidate], start: int, end: int
    ) -> Optional[int]:
        best_index = None
        best_key = None
        for index, candidate in enumerate(candidates):
            if candidate.start < end and start < candidate.end:
                continue  # keyword inside the candidate span
            if end <= candidate.start:
                distance = gap_distance(text, end, candidate.start)
                # Ties go to the figure after the keyword ("Total: Rs 599")
                key = (distance, 0)
            else:
                distance = gap_distance(text, candidate.end, start)
                key = (distance, 1)
            if distance > MAX_KEYWORD_GAP:
                continue
            if best_key is None or key < best_key:
                best_key = key
                best_index = index
        return best_index


def find_amount(text: str, default_currency: str = "INR") -> Optional[AmountMatch]:
    """Convenience wrapper around AmountNormalizer.find()."""
    return AmountNormalizer(default_currency=default_currency).find(text)
