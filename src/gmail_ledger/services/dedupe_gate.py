"""
Deduplication gate.

Runs before anything is staged. Two rules:

1. Primary: the same source message id already exists for this user in any
   state (pending, confirmed, deleted). Re-fetching a mailbox is therefore
   always a no-op for messages seen before.
2. Secondary: same amount (exact), same direction and occurred-on dates
   within `date_tolerance_days` of a pending or confirmed record. Catches
   one purchase reported by two mails (bank alert + merchant receipt).

Rule 2 may drop two genuinely separate same-day, same-amount transactions.
That trade-off is kept as is; see DESIGN.md.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from ..schemas.transaction import Direction, ExtractedTransaction, PendingState
from ..state_store.sqlite_store import DedupeRow

logger = logging.getLogger(__name__)

REASON_SAME_MESSAGE = "same_message"
REASON_SAME_EVENT = "same_event"


@dataclass
class KnownEvent:
    """Amount/direction/date of something already staged or recorded."""

    amount: Decimal
    direction: Direction
    occurred_on: date


@dataclass
class GateResult:
    """Outcome of filtering one batch."""

    accepted: list[ExtractedTransaction] = field(default_factory=list)
    rejected: list[tuple[str, str]] = field(default_factory=list)  # (message_id, reason)

    @property
    def deduped_away(self) -> int:
        return len(self.rejected)


class DeduplicationGate:
    """Decides which candidates are new for a user."""

    def __init__(self, date_tolerance_days: int = 0):
        if date_tolerance_days < 0:
            raise ValueError("date_tolerance_days must be >= 0")
        self.date_tolerance_days = date_tolerance_days

    def _same_event(self, candidate: ExtractedTransaction, event: KnownEvent) -> bool:
        return (
            candidate.amount == event.amount
            and candidate.direction == event.direction
            and abs((candidate.occurred_on - event.occurred_on).days) <= self.date_tolerance_days
        )

    def duplicate_reason(
        self,
        candidate: ExtractedTransaction,
        known_message_ids: set[str],
        known_events: Iterable[KnownEvent],
    ) -> str | None:
        """Why the candidate is a duplicate, or None if it is new."""
        if candidate.source_message_id in known_message_ids:
            return REASON_SAME_MESSAGE
        for event in known_events:
            if self._same_event(candidate, event):
                return REASON_SAME_EVENT
        return None

    def is_duplicate(
        self,
        candidate: ExtractedTransaction,
        existing_pending: Iterable[DedupeRow],
        existing_confirmed: Iterable[DedupeRow],
        deleted_message_ids: Iterable[str] = (),
    ) -> bool:
        """Check one candidate against existing records."""
        pending = list(existing_pending)
        confirmed = list(existing_confirmed)
        message_ids = {row.source_message_id for row in pending + confirmed}
        message_ids.update(deleted_message_ids)
        events = [KnownEvent(r.amount, r.direction, r.occurred_on) for r in pending + confirmed]
        return self.duplicate_reason(candidate, message_ids, events) is not None

    def filter_new(
        self,
        candidates: Iterable[ExtractedTransaction],
        existing: Iterable[DedupeRow],
        extra_events: Iterable[KnownEvent] = (),
    ) -> GateResult:
        """
        Split a batch into new and duplicate candidates.

        Accepted candidates join the comparison set, so duplicates within
        the batch itself are caught too.

        Args:
            candidates: Extracted batch
            existing: Every record the user already has (any state)
            extra_events: Additional known events (e.g., read back from the ledger)
        """
        existing = list(existing)
        message_ids = {row.source_message_id for row in existing}
        events = [
            KnownEvent(row.amount, row.direction, row.occurred_on)
            for row in existing
            if row.state != PendingState.DELETED
        ]
        events.extend(extra_events)

        result = GateResult()
        for candidate in candidates:
            reason = self.duplicate_reason(candidate, message_ids, events)
            if reason:
                logger.debug(f"Dropping {candidate.source_message_id}: {reason}")
                result.rejected.append((candidate.source_message_id, reason))
                continue
            result.accepted.append(candidate)
            message_ids.add(candidate.source_message_id)
            events.append(KnownEvent(candidate.amount, candidate.direction, candidate.occurred_on))

        return result
