# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from decimal import Decimal

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


class LedgerStorage(ABC):
    """
    Persistence contract for one household (or solo user) ledger.

    Implementors may back this with Postgres, SQLite or any store that can
    offer the three guarantees the ledger relies on:

    - ``adjust_envelope`` is an atomic increment keyed by
      ``(period_key, envelope_id)``; callers never write absolute
      ``allocated``/``spent`` values computed client-side.
    - ``unit_of_work()`` makes every write performed inside the block commit
      together or not at all, and serialises it against other writers.
    - ``append_rollover_history`` is append-only; entries are never updated.
    - Activity entries are append-only apart from ``mark_activity_undone``.

    The default MemoryStorage is suitable for single-process use and testing
    only. State is lost when the process exits.
    """

    # ─── Unit of work ─────────────────────────────────────────────────────────

    @abstractmethod
    def unit_of_work(self) -> AbstractContextManager[None]:
        """
        Context manager wrapping one logical ledger operation.

        Reads inside the block observe the committed state plus the block's
        own writes. An exception raised inside the block discards every write
        made in it. Blocks may nest; only the outermost one commits.

        A backend that cannot serialise a conflicting concurrent commit
        raises ConcurrencyConflictError from the outermost block; the block
        may then be retried as a whole.
        """
        ...

    # ─── Periods ──────────────────────────────────────────────────────────────

    @abstractmethod
    def get_period(self, period_key: str) -> MonthlyPeriod | None:
        ...

    @abstractmethod
    def save_period(self, period: MonthlyPeriod) -> None:
        ...

    @abstractmethod
    def list_periods(self) -> list[MonthlyPeriod]:
        ...

    # ─── Envelopes ────────────────────────────────────────────────────────────

    @abstractmethod
    def get_envelope(self, period_key: str, envelope_id: str) -> Envelope | None:
        ...

    @abstractmethod
    def save_envelope(self, envelope: Envelope) -> None:
        """Insert or replace descriptive fields. Never used to move money."""
        ...

    @abstractmethod
    def delete_envelope(self, period_key: str, envelope_id: str) -> None:
        ...

    @abstractmethod
    def list_envelopes(self, period_key: str) -> list[Envelope]:
        """Envelopes of one period, ordered by position."""
        ...

    @abstractmethod
    def periods_with_envelope(self, envelope_id: str) -> list[str]:
        ...

    @abstractmethod
    def adjust_envelope(
        self,
        period_key: str,
        envelope_id: str,
        allocated_delta: Decimal = Decimal("0"),
        spent_delta: Decimal = Decimal("0"),
    ) -> Envelope:
        """Atomically add the deltas to the stored figures and return the result."""
        ...

    # ─── Incomes ──────────────────────────────────────────────────────────────

    @abstractmethod
    def get_income(self, income_id: str) -> Income | None:
        ...

    @abstractmethod
    def save_income(self, income: Income) -> None:
        ...

    @abstractmethod
    def delete_income(self, income_id: str) -> None:
        ...

    @abstractmethod
    def list_incomes(self, period_key: str) -> list[Income]:
        ...

    # ─── Transactions ─────────────────────────────────────────────────────────

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Transaction | None:
        ...

    @abstractmethod
    def save_transaction(self, transaction: Transaction) -> None:
        ...

    @abstractmethod
    def delete_transaction(self, transaction_id: str) -> None:
        ...

    @abstractmethod
    def list_transactions(self, period_key: str) -> list[Transaction]:
        ...

    # ─── Splits ───────────────────────────────────────────────────────────────

    @abstractmethod
    def list_splits(self, parent_transaction_id: str) -> list[Split]:
        ...

    @abstractmethod
    def list_period_splits(self, period_key: str) -> list[Split]:
        ...

    @abstractmethod
    def replace_splits(self, parent_transaction_id: str, splits: list[Split]) -> None:
        """Swap the full split set of one transaction. An empty list removes it."""
        ...

    # ─── Savings goals ────────────────────────────────────────────────────────

    @abstractmethod
    def get_goal(self, goal_id: str) -> SavingsGoal | None:
        ...

    @abstractmethod
    def get_goal_by_envelope(self, envelope_id: str) -> SavingsGoal | None:
        ...

    @abstractmethod
    def save_goal(self, goal: SavingsGoal) -> None:
        ...

    @abstractmethod
    def delete_goal(self, goal_id: str) -> None:
        ...

    @abstractmethod
    def list_goals(self) -> list[SavingsGoal]:
        ...

    # ─── Rollover history ─────────────────────────────────────────────────────

    @abstractmethod
    def append_rollover_history(self, entry: RolloverHistoryEntry) -> None:
        ...

    @abstractmethod
    def list_rollover_history(self) -> list[RolloverHistoryEntry]:
        """All entries in insertion order."""
        ...

    # ─── Activity log ─────────────────────────────────────────────────────────

    @abstractmethod
    def append_activity(self, entry: ActivityEntry) -> None:
        ...

    @abstractmethod
    def get_activity(self, activity_id: str) -> ActivityEntry | None:
        ...

    @abstractmethod
    def list_activity(self) -> list[ActivityEntry]:
        """All entries in insertion order."""
        ...

    @abstractmethod
    def mark_activity_undone(self, activity_id: str, undone_at: datetime) -> None:
        """Set ``undone_at``; the only update an activity entry ever receives."""
        ...

    # ─── Recurring rules ──────────────────────────────────────────────────────

    @abstractmethod
    def get_recurring(self, recurring_id: str) -> RecurringTransaction | None:
        ...

    @abstractmethod
    def save_recurring(self, recurring: RecurringTransaction) -> None:
        ...

    @abstractmethod
    def delete_recurring(self, recurring_id: str) -> None:
        ...

    @abstractmethod
    def list_recurring(self) -> list[RecurringTransaction]:
        ...

    # ─── Idempotency keys ─────────────────────────────────────────────────────

    @abstractmethod
    def get_operation(self, idempotency_key: str) -> str | None:
        """Return the outcome reference recorded for a committed key, if any."""
        ...

    @abstractmethod
    def record_operation(self, idempotency_key: str, outcome_ref: str) -> None:
        ...
