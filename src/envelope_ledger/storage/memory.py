# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

from envelope_ledger.errors import NotFoundError
from envelope_ledger.money import quantize
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.types import (
    ActivityEntry,
    Envelope,
    Income,
    MonthlyPeriod,
    RecurringTransaction,
    RolloverHistoryEntry,
    SavingsGoal,
    Split,
    Transaction,
)

logger = logging.getLogger("envelope_ledger.storage")

_TABLES = (
    "_periods",
    "_envelopes",
    "_incomes",
    "_transactions",
    "_splits",
    "_goals",
    "_recurring",
    "_operations",
    "_activity",
)


class MemoryStorage(LedgerStorage):
    """
    In-process memory store for one household ledger.

    A re-entrant lock serialises writers, so several threads acting for
    different household members can share one instance. ``unit_of_work``
    holds the lock for the whole block and snapshots every table on entry;
    an exception inside the outermost block restores the snapshot.

    All state is lost when the process exits. For durable storage, provide a
    persistent LedgerStorage implementation.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0

        self._periods: dict[str, MonthlyPeriod] = {}
        self._envelopes: dict[tuple[str, str], Envelope] = {}     # (period, id) -> envelope
        self._incomes: dict[str, Income] = {}
        self._transactions: dict[str, Transaction] = {}
        self._splits: dict[str, list[Split]] = {}                  # parent id -> legs
        self._goals: dict[str, SavingsGoal] = {}
        self._recurring: dict[str, RecurringTransaction] = {}
        self._operations: dict[str, str] = {}                      # idempotency key -> ref
        self._history: list[RolloverHistoryEntry] = []
        self._activity: dict[str, ActivityEntry] = {}

    # ─── Unit of work ─────────────────────────────────────────────────────────

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    self._restore(snapshot)
                    logger.debug("unit_of_work_rolled_back")
                raise
            finally:
                self._depth -= 1

    def _snapshot(self) -> dict[str, Any]:
        # Stored models are never mutated in place, so shallow copies suffice.
        snapshot: dict[str, Any] = {name: dict(getattr(self, name)) for name in _TABLES}
        snapshot["_splits"] = {key: list(legs) for key, legs in self._splits.items()}
        snapshot["_history"] = list(self._history)
        return snapshot

    def _restore(self, snapshot: dict[str, Any]) -> None:
        for name, table in snapshot.items():
            setattr(self, name, table)

    # ─── Periods ──────────────────────────────────────────────────────────────

    def get_period(self, period_key: str) -> MonthlyPeriod | None:
        with self._lock:
            period = self._periods.get(period_key)
            return period.model_copy(deep=True) if period else None

    def save_period(self, period: MonthlyPeriod) -> None:
        with self._lock:
            self._periods[period.key] = period.model_copy(deep=True)

    def list_periods(self) -> list[MonthlyPeriod]:
        with self._lock:
            return [self._periods[key].model_copy(deep=True) for key in sorted(self._periods)]

    # ─── Envelopes ────────────────────────────────────────────────────────────

    def get_envelope(self, period_key: str, envelope_id: str) -> Envelope | None:
        with self._lock:
            envelope = self._envelopes.get((period_key, envelope_id))
            return envelope.model_copy(deep=True) if envelope else None

    def save_envelope(self, envelope: Envelope) -> None:
        with self._lock:
            self._envelopes[(envelope.period_key, envelope.id)] = envelope.model_copy(deep=True)

    def delete_envelope(self, period_key: str, envelope_id: str) -> None:
        with self._lock:
            self._envelopes.pop((period_key, envelope_id), None)

    def list_envelopes(self, period_key: str) -> list[Envelope]:
        with self._lock:
            envelopes = [
                envelope.model_copy(deep=True)
                for (key, _), envelope in self._envelopes.items()
                if key == period_key
            ]
        return sorted(envelopes, key=lambda envelope: (envelope.position, envelope.created_at))

    def periods_with_envelope(self, envelope_id: str) -> list[str]:
        with self._lock:
            return sorted(key for (key, identifier) in self._envelopes if identifier == envelope_id)

    def adjust_envelope(
        self,
        period_key: str,
        envelope_id: str,
        allocated_delta: Decimal = Decimal("0"),
        spent_delta: Decimal = Decimal("0"),
    ) -> Envelope:
        with self._lock:
            current = self._envelopes.get((period_key, envelope_id))
            if current is None:
                raise NotFoundError("envelope", envelope_id, period_key)
            updated = current.model_copy(
                update={
                    "allocated": quantize(current.allocated + allocated_delta),
                    "spent": quantize(current.spent + spent_delta),
                }
            )
            self._envelopes[(period_key, envelope_id)] = updated
            return updated.model_copy(deep=True)

    # ─── Incomes ──────────────────────────────────────────────────────────────

    def get_income(self, income_id: str) -> Income | None:
        with self._lock:
            income = self._incomes.get(income_id)
            return income.model_copy(deep=True) if income else None

    def save_income(self, income: Income) -> None:
        with self._lock:
            self._incomes[income.id] = income.model_copy(deep=True)

    def delete_income(self, income_id: str) -> None:
        with self._lock:
            self._incomes.pop(income_id, None)

    def list_incomes(self, period_key: str) -> list[Income]:
        with self._lock:
            return [
                income.model_copy(deep=True)
                for income in self._incomes.values()
                if income.period_key == period_key
            ]

    # ─── Transactions ─────────────────────────────────────────────────────────

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            return transaction.model_copy(deep=True) if transaction else None

    def save_transaction(self, transaction: Transaction) -> None:
        with self._lock:
            self._transactions[transaction.id] = transaction.model_copy(deep=True)

    def delete_transaction(self, transaction_id: str) -> None:
        with self._lock:
            self._transactions.pop(transaction_id, None)

    def list_transactions(self, period_key: str) -> list[Transaction]:
        with self._lock:
            return [
                transaction.model_copy(deep=True)
                for transaction in self._transactions.values()
                if transaction.period_key == period_key
            ]

    # ─── Splits ───────────────────────────────────────────────────────────────

    def list_splits(self, parent_transaction_id: str) -> list[Split]:
        with self._lock:
            return [split.model_copy(deep=True) for split in self._splits.get(parent_transaction_id, [])]

    def list_period_splits(self, period_key: str) -> list[Split]:
        with self._lock:
            return [
                split.model_copy(deep=True)
                for legs in self._splits.values()
                for split in legs
                if split.period_key == period_key
            ]

    def replace_splits(self, parent_transaction_id: str, splits: list[Split]) -> None:
        with self._lock:
            if splits:
                self._splits[parent_transaction_id] = [split.model_copy(deep=True) for split in splits]
            else:
                self._splits.pop(parent_transaction_id, None)

    # ─── Savings goals ────────────────────────────────────────────────────────

    def get_goal(self, goal_id: str) -> SavingsGoal | None:
        with self._lock:
            goal = self._goals.get(goal_id)
            return goal.model_copy(deep=True) if goal else None

    def get_goal_by_envelope(self, envelope_id: str) -> SavingsGoal | None:
        with self._lock:
            for goal in self._goals.values():
                if goal.envelope_id == envelope_id:
                    return goal.model_copy(deep=True)
            return None

    def save_goal(self, goal: SavingsGoal) -> None:
        with self._lock:
            self._goals[goal.id] = goal.model_copy(deep=True)

    def delete_goal(self, goal_id: str) -> None:
        with self._lock:
            self._goals.pop(goal_id, None)

    def list_goals(self) -> list[SavingsGoal]:
        with self._lock:
            return [goal.model_copy(deep=True) for goal in self._goals.values()]

    # ─── Rollover history ─────────────────────────────────────────────────────

    def append_rollover_history(self, entry: RolloverHistoryEntry) -> None:
        with self._lock:
            self._history.append(entry)

    def list_rollover_history(self) -> list[RolloverHistoryEntry]:
        with self._lock:
            return list(self._history)

    # ─── Activity log ─────────────────────────────────────────────────────────

    def append_activity(self, entry: ActivityEntry) -> None:
        with self._lock:
            self._activity[entry.id] = entry.model_copy(deep=True)

    def get_activity(self, activity_id: str) -> ActivityEntry | None:
        with self._lock:
            entry = self._activity.get(activity_id)
            return entry.model_copy(deep=True) if entry else None

    def list_activity(self) -> list[ActivityEntry]:
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._activity.values()]

    def mark_activity_undone(self, activity_id: str, undone_at: datetime) -> None:
        with self._lock:
            entry = self._activity.get(activity_id)
            if entry is None:
                raise NotFoundError("activity", activity_id)
            self._activity[activity_id] = entry.model_copy(update={"undone_at": undone_at})

    # ─── Recurring rules ──────────────────────────────────────────────────────

    def get_recurring(self, recurring_id: str) -> RecurringTransaction | None:
        with self._lock:
            recurring = self._recurring.get(recurring_id)
            return recurring.model_copy(deep=True) if recurring else None

    def save_recurring(self, recurring: RecurringTransaction) -> None:
        with self._lock:
            self._recurring[recurring.id] = recurring.model_copy(deep=True)

    def delete_recurring(self, recurring_id: str) -> None:
        with self._lock:
            self._recurring.pop(recurring_id, None)

    def list_recurring(self) -> list[RecurringTransaction]:
        with self._lock:
            return [recurring.model_copy(deep=True) for recurring in self._recurring.values()]

    # ─── Idempotency keys ─────────────────────────────────────────────────────

    def get_operation(self, idempotency_key: str) -> str | None:
        with self._lock:
            return self._operations.get(idempotency_key)

    def record_operation(self, idempotency_key: str, outcome_ref: str) -> None:
        with self._lock:
            self._operations[idempotency_key] = outcome_ref
