# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Recurring expenses.

A RecurringTransaction is a rule; the scheduler turns each due occurrence
into an ordinary expense through ``TransactionLedger.add``, with no
privileged path. Every occurrence carries the idempotency key
``recurring:<rule id>:<due date>``, so a scheduler that retries after a
crash never books the same occurrence twice.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel

from envelope_ledger.config import LedgerConfig
from envelope_ledger.errors import LedgerError, LedgerValidationError, NotFoundError
from envelope_ledger.events import EventBus
from envelope_ledger.money import AmountInput
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.transaction import TransactionLedger
from envelope_ledger.types import (
    LedgerScope,
    PeriodKey,
    RecurringFrequency,
    RecurringTransaction,
    build_record,
)

logger = logging.getLogger("envelope_ledger.recurring")

_MONTH_STEPS: dict[str, int] = {"monthly": 1, "quarterly": 3, "yearly": 12}
_DAY_STEPS: dict[str, int] = {"weekly": 7, "biweekly": 14}

_UPDATABLE_FIELDS = frozenset(
    {"envelope_id", "amount", "description", "merchant", "frequency", "next_due_date", "anchor_day", "is_active"}
)


def add_months(value: date, months: int, day: int | None = None) -> date:
    """
    Shift ``value`` by whole months, clamping to the last day of the target month.

    ``day`` overrides the day of month to aim for, so a rule anchored on the
    31st comes back to the 31st after a shorter month.
    """
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day or value.day, last_day))


def next_due_date(current: date, frequency: RecurringFrequency, anchor_day: int | None = None) -> date:
    if frequency in _DAY_STEPS:
        return current + timedelta(days=_DAY_STEPS[frequency])
    return add_months(current, _MONTH_STEPS[frequency], day=anchor_day)


OccurrenceStatus = Literal["posted", "replayed", "error"]


class RecurringOccurrence(BaseModel, frozen=True):
    recurring_id: str
    due_date: date
    status: OccurrenceStatus
    transaction_id: Optional[str] = None
    reason: Optional[str] = None


class RecurringRunReport(BaseModel, frozen=True):
    today: date
    occurrences: list[RecurringOccurrence]

    @property
    def posted(self) -> list[RecurringOccurrence]:
        return [occurrence for occurrence in self.occurrences if occurrence.status == "posted"]


class RecurringScheduler:
    def __init__(
        self,
        storage: LedgerStorage,
        config: LedgerConfig,
        scope: LedgerScope,
        events: EventBus,
        transactions: TransactionLedger,
    ) -> None:
        self._storage = storage
        self._config = config
        self._scope = scope
        self._events = events
        self._transactions = transactions

    # ─── Rules ────────────────────────────────────────────────────────────────

    def get(self, recurring_id: str) -> RecurringTransaction:
        recurring = self._storage.get_recurring(recurring_id)
        if recurring is None:
            raise NotFoundError("recurring transaction", recurring_id)
        return recurring

    def list_recurring(self) -> list[RecurringTransaction]:
        return sorted(self._storage.list_recurring(), key=lambda rule: (rule.next_due_date, rule.created_at))

    def add(
        self,
        envelope_id: str,
        amount: AmountInput,
        next_due_date: date,
        description: str = "",
        merchant: str | None = None,
        frequency: RecurringFrequency = "monthly",
    ) -> RecurringTransaction:
        rule = build_record(
            RecurringTransaction,
            id=str(uuid4()),
            envelope_id=envelope_id,
            amount=amount,
            description=description.strip(),
            merchant=merchant,
            frequency=frequency,
            next_due_date=next_due_date,
            user_id=self._scope.user_id,
            household_id=self._scope.household_id,
        )
        with self._storage.unit_of_work():
            if not self._storage.periods_with_envelope(envelope_id):
                raise NotFoundError("envelope", envelope_id)
            self._storage.save_recurring(rule)

        logger.info(
            "recurring_added",
            extra={"recurring_id": rule.id, "envelope_id": envelope_id, "frequency": frequency},
        )
        self._events.emit("recurring_changed", entity_id=rule.id)
        return rule

    def update(self, recurring_id: str, **changes: Any) -> RecurringTransaction:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise LedgerValidationError(
                f"Cannot update recurring field(s): {', '.join(sorted(unknown))}.",
                field=sorted(unknown)[0],
            )
        if "next_due_date" in changes and "anchor_day" not in changes:
            # A rescheduled rule anchors on its new day of month.
            changes["anchor_day"] = None
        with self._storage.unit_of_work():
            current = self.get(recurring_id)
            updated = build_record(RecurringTransaction, **{**current.model_dump(), **changes})
            if updated.envelope_id != current.envelope_id and not self._storage.periods_with_envelope(
                updated.envelope_id
            ):
                raise NotFoundError("envelope", updated.envelope_id)
            self._storage.save_recurring(updated)

        self._events.emit("recurring_changed", entity_id=recurring_id)
        return updated

    def delete(self, recurring_id: str) -> None:
        with self._storage.unit_of_work():
            self.get(recurring_id)
            self._storage.delete_recurring(recurring_id)

        logger.info("recurring_deleted", extra={"recurring_id": recurring_id})
        self._events.emit("recurring_changed", entity_id=recurring_id)

    # ─── Scheduling ───────────────────────────────────────────────────────────

    def process_due(self, today: date) -> RecurringRunReport:
        """
        Post every occurrence due on or before ``today`` into the period of ``today``.

        Missed occurrences are caught up one by one. A rule whose envelope is
        missing from the current period is reported as an error and left
        untouched, so it is retried on the next run.
        """
        period_key = str(PeriodKey.from_date(today))
        occurrences: list[RecurringOccurrence] = []

        for rule in self.list_recurring():
            if not rule.is_active:
                continue
            due = rule.next_due_date
            while due <= today:
                try:
                    result = self._transactions.add(
                        period_key,
                        rule.envelope_id,
                        rule.amount,
                        description=rule.description,
                        merchant=rule.merchant,
                        date=due if PeriodKey.from_date(due) == PeriodKey.from_date(today) else today,
                        idempotency_key=f"recurring:{rule.id}:{due.isoformat()}",
                    )
                except LedgerError as exc:
                    logger.warning(
                        "recurring_occurrence_failed",
                        extra={"recurring_id": rule.id, "due_date": due.isoformat(), "code": exc.code},
                    )
                    occurrences.append(
                        RecurringOccurrence(
                            recurring_id=rule.id, due_date=due, status="error", reason=exc.message
                        )
                    )
                    break

                occurrences.append(
                    RecurringOccurrence(
                        recurring_id=rule.id,
                        due_date=due,
                        status="replayed" if result.replayed else "posted",
                        transaction_id=result.transaction.id,
                    )
                )
                due = next_due_date(due, rule.frequency, rule.anchor_day)
                self._storage.save_recurring(rule.model_copy(update={"next_due_date": due}))

        logger.info(
            "recurring_processed",
            extra={"today": today.isoformat(), "occurrences": len(occurrences)},
        )
        return RecurringRunReport(today=today, occurrences=occurrences)
