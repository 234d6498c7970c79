"""
Review workflow management.

The only path from a staged candidate to the permanent ledger. Every state
change is a conditional update in the store, so a record is confirmed or
deleted at most once even under concurrent calls.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from ..errors import InvalidTransitionError, OwnershipError, PendingNotFoundError
from ..ledger_client import LedgerClient, LedgerDuplicateError, LedgerError
from ..schemas.dedupe import generate_external_id
from ..schemas.transaction import LedgerEntry, PendingState
from ..state_store import PendingRecord, StateStore

logger = logging.getLogger(__name__)

SKIP_NOT_FOUND = "not_found"
SKIP_FORBIDDEN = "forbidden"
SKIP_NOT_PENDING = "not_pending"
SKIP_LEDGER_ERROR = "ledger_error"

# Caller-facing field name -> store column
EDITABLE_FIELDS = {
    "vendor": "vendor",
    "category": "category",
    "amount": "amount",
    "date": "occurred_on",
    "occurred_on": "occurred_on",
    "description": "description",
}


@dataclass
class ConfirmResult:
    """Outcome of a confirm batch."""

    confirmed: list[int] = field(default_factory=list)
    skipped: list[tuple[int, str]] = field(default_factory=list)  # (pending_id, reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "confirmed": self.confirmed,
            "skipped": [{"id": pending_id, "reason": reason} for pending_id, reason in self.skipped],
        }


def _parse_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value).replace(",", "").strip())
        if amount.is_finite():
            amount = amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValueError(f"amount is not a number: {value!r}")
    # Checked after rounding so "0.004" cannot become 0.00
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"amount must be positive, got: {value!r}")
    return amount


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValueError(f"date must be YYYY-MM-DD, got: {value!r}")


class ReviewWorkflow:
    """
    Manages the review workflow.

    Responsibilities:
    - List records awaiting review
    - Apply reviewer edits (with edit log)
    - Soft delete
    - Confirm into the ledger (claim -> write -> confirmed)
    """

    def __init__(self, store: StateStore, ledger: LedgerClient):
        """Initialize with state store and ledger client."""
        self.store = store
        self.ledger = ledger

    def _owned(self, user_id: str, pending_id: int) -> PendingRecord:
        record = self.store.get_pending(pending_id)
        if record is None:
            raise PendingNotFoundError(pending_id)
        if record.user_id != user_id:
            raise OwnershipError(pending_id, user_id)
        return record

    def list_pending(self, user_id: str) -> list[PendingRecord]:
        """Records awaiting review, newest occurred-on first."""
        return self.store.list_pending(user_id)

    def update_pending(self, user_id: str, pending_id: int, **fields: Any) -> PendingRecord:
        """
        Edit a pending record.

        Editable: vendor, category, amount, date, description. Confidence
        and source message id never change.

        Raises:
            ValueError: Unknown field or invalid value
            PendingNotFoundError / OwnershipError / InvalidTransitionError
        """
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)}")

        record = self._owned(user_id, pending_id)
        if record.state != PendingState.PENDING:
            raise InvalidTransitionError(pending_id, record.state.value)

        changes: dict[str, tuple[Any, Any]] = {}
        for name, value in fields.items():
            column = EDITABLE_FIELDS[name]
            if column == "amount":
                new_amount = _parse_amount(value)
                if new_amount != record.amount:
                    changes[column] = (str(record.amount), str(new_amount))
            elif column == "occurred_on":
                new_date = _parse_date(value)
                if new_date != record.occurred_on:
                    changes[column] = (record.occurred_on.isoformat(), new_date.isoformat())
            else:
                new_text = "" if value is None else str(value).strip()
                if column in ("vendor", "category") and not new_text:
                    raise ValueError(f"{name} cannot be empty")
                if new_text != getattr(record, column):
                    changes[column] = (getattr(record, column), new_text)

        if changes:
            if not self.store.apply_edits(pending_id, user_id, changes):
                # Lost a race with confirm/delete
                current = self._owned(user_id, pending_id)
                raise InvalidTransitionError(pending_id, current.state.value)
            logger.info(f"Edited pending {pending_id}: {', '.join(sorted(changes))}")

        updated = self.store.get_pending(pending_id, with_edits=True)
        assert updated is not None
        return updated

    def delete_pending(self, user_id: str, pending_id: int) -> None:
        """
        Soft delete a pending record.

        The row stays as a tombstone, so the same message is never staged again.
        """
        self._owned(user_id, pending_id)
        if not self.store.soft_delete(pending_id, user_id):
            current = self._owned(user_id, pending_id)
            raise InvalidTransitionError(pending_id, current.state.value)
        logger.info(f"Deleted pending {pending_id}")

    def _to_entry(self, record: PendingRecord) -> LedgerEntry:
        return LedgerEntry(
            user_id=record.user_id,
            amount=record.amount,
            currency=record.currency,
            direction=record.direction,
            category=record.category,
            vendor=record.vendor,
            date=record.occurred_on,
            description=record.description,
            external_id=generate_external_id(record.user_id, record.source_message_id),
            payment_method=record.payment_method,
            reference_id=record.reference_id,
        )

    def confirm_pending(self, user_id: str, pending_ids: list[int]) -> ConfirmResult:
        """
        Promote pending records to the ledger.

        Valid ids are processed even if others in the batch are skipped.
        A ledger failure puts the record back to pending.
        """
        result = ConfirmResult()

        for pending_id in pending_ids:
            record = self.store.get_pending(pending_id)
            if record is None:
                result.skipped.append((pending_id, SKIP_NOT_FOUND))
                continue
            if record.user_id != user_id:
                logger.warning(f"User {user_id} tried to confirm pending {pending_id} of another user")
                result.skipped.append((pending_id, SKIP_FORBIDDEN))
                continue
            if not self.store.claim(pending_id, user_id):
                result.skipped.append((pending_id, SKIP_NOT_PENDING))
                continue

            # Edits that landed before the claim must reach the ledger
            record = self.store.get_pending(pending_id)
            if record is None:
                result.skipped.append((pending_id, SKIP_NOT_FOUND))
                continue

            entry = self._to_entry(record)
            try:
                ledger_entry_id = self.ledger.record(entry)
            except LedgerDuplicateError as e:
                # Written by an earlier attempt that never got marked confirmed
                ledger_entry_id = e.existing_id or entry.external_id
                logger.info(f"Pending {pending_id} already in ledger as {ledger_entry_id}")
            except LedgerError as e:
                self.store.release_claim(pending_id)
                logger.error(f"Ledger write failed for pending {pending_id}: {e}")
                result.skipped.append((pending_id, SKIP_LEDGER_ERROR))
                continue
            except Exception:
                self.store.release_claim(pending_id)
                raise

            self.store.mark_confirmed(pending_id, ledger_entry_id)
            result.confirmed.append(pending_id)
            logger.info(f"Confirmed pending {pending_id} -> ledger {ledger_entry_id}")

        return result
