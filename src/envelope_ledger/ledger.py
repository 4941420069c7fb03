# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Callable

from envelope_ledger.activity import ActivityLog
from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import EnvelopeStore, ensure_period, period_str
from envelope_ledger.events import EventBus, LedgerListener
from envelope_ledger.goals import AutoContributionReport, GoalProgress, SavingsGoalTracker, reached_milestones
from envelope_ledger.incomes import DeficitPlan, IncomeChangeResult, IncomeLedger
from envelope_ledger.integrity import IntegrityChecker, IntegrityReport
from envelope_ledger.money import AmountInput, to_cents
from envelope_ledger.query import EnvelopeSummary, PeriodSummary, build_envelope_summary, build_period_summary
from envelope_ledger.recurring import RecurringRunReport, RecurringScheduler
from envelope_ledger.rollover import RolloverEngine, RolloverReport
from envelope_ledger.splits import SplitAllocator, SplitLegInput, SplitResult, SplitShare
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.storage.memory import MemoryStorage
from envelope_ledger.transaction import TransactionLedger, TransactionResult
from envelope_ledger.transfer import TransferEngine, TransferResult
from envelope_ledger.types import (
    ActivityCategory,
    ActivityEntry,
    Envelope,
    EnvelopeCategory,
    EnvelopeColor,
    EnvelopeIcon,
    GoalPriority,
    Income,
    LedgerScope,
    MonthlyPeriod,
    PeriodKey,
    RecurringFrequency,
    RecurringTransaction,
    RolloverHistoryEntry,
    RolloverStrategy,
    SavingsGoal,
    Split,
    Transaction,
    TransactionFilter,
)

logger = logging.getLogger("envelope_ledger.ledger")

PeriodInput = PeriodKey | str


class BudgetLedger:
    """
    Envelope budgeting ledger for one household (or one solo user).

    Design contract
    ---------------
    - "To be budgeted" is never stored. Every query and every bound check
      recomputes it as ``Σincome − Σallocated`` for the period.
    - Every mutation is one storage unit of work. Bounds are re-validated
      inside it, so a stale check made by a UI cannot let a bad write through.
    - ``spent`` and ``allocated`` only move through the storage increment
      primitive; no operation writes an absolute figure computed elsewhere.
    - Listeners registered with ``subscribe()`` are called after commit.
    - Every user-facing mutation appends an activity entry in its own unit
      of work; ``undo_activity()`` reverts an entry at most once.

    Usage
    -----
    ::

        ledger = BudgetLedger(scope=LedgerScope(user_id="u-1", household_id="h-1"))
        ledger.add_income("2026-03", "2000.00", description="Salary")
        courses = ledger.create_envelope("2026-03", "Courses", icon="ShoppingCart", category="essential")
        ledger.allocate("2026-03", courses.id, "500")
        result = ledger.add_transaction("2026-03", courses.id, "45,30", merchant="Carrefour")
        ledger.to_be_budgeted("2026-03")   # Decimal('1500.00')
    """

    def __init__(
        self,
        config: LedgerConfig | None = None,
        storage: LedgerStorage | None = None,
        scope: LedgerScope | None = None,
    ) -> None:
        self._config = LedgerConfig.model_validate(config.model_dump() if config else {})
        self._storage: LedgerStorage = storage if storage is not None else MemoryStorage()
        self._scope = scope if scope is not None else LedgerScope(user_id="local")
        self._events = EventBus()

        self._envelopes = EnvelopeStore(self._storage, self._config, self._scope, self._events)
        self._incomes = IncomeLedger(self._storage, self._config, self._scope, self._events)
        self._transactions = TransactionLedger(self._storage, self._config, self._scope, self._events)
        self._splits = SplitAllocator(self._storage, self._config, self._scope, self._events)
        self._transfers = TransferEngine(self._storage, self._config, self._events)
        self._rollover = RolloverEngine(self._storage, self._config, self._scope, self._events)
        self._goals = SavingsGoalTracker(self._storage, self._config, self._scope, self._events, self._envelopes)
        self._recurring = RecurringScheduler(
            self._storage, self._config, self._scope, self._events, self._transactions
        )
        self._integrity = IntegrityChecker(self._storage, self._config, self._events)
        self._activity = ActivityLog(
            self._storage,
            self._scope,
            self._events,
            self._envelopes,
            self._incomes,
            self._transactions,
            self._splits,
            self._transfers,
        )

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def scope(self) -> LedgerScope:
        return self._scope

    @property
    def storage(self) -> LedgerStorage:
        return self._storage

    # ─── Notifications ────────────────────────────────────────────────────────

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """Call ``listener`` after every committed mutation. Returns an unsubscribe callable."""
        return self._events.subscribe(listener)

    @contextmanager
    def _logged(self) -> Iterator[None]:
        """One unit of work for an action and its activity entry; events wait for the commit."""
        with self._events.deferred(), self._storage.unit_of_work():
            yield

    def _is_replay(self, idempotency_key: str | None) -> bool:
        return idempotency_key is not None and self._storage.get_operation(idempotency_key) is not None

    # ─── Periods ──────────────────────────────────────────────────────────────

    def ensure_period(self, period: PeriodInput) -> MonthlyPeriod:
        key = period_str(period)
        monthly_period, created = ensure_period(self._storage, self._scope, key)
        if created:
            logger.info("period_created", extra={"period_key": key})
            self._events.emit("period_created", key)
        return monthly_period

    def list_periods(self) -> list[str]:
        return [period.key for period in self._storage.list_periods()]

    # ─── Incomes ──────────────────────────────────────────────────────────────

    def add_income(
        self,
        period: PeriodInput,
        amount: AmountInput,
        description: str = "",
        date: date | None = None,
    ) -> IncomeChangeResult:
        with self._logged():
            result = self._incomes.add(period, amount, description=description, date=date)
            self._activity.record_income("income_added", result.income)
        return result

    def update_income(
        self,
        period: PeriodInput,
        income_id: str,
        amount: AmountInput | None = None,
        description: str | None = None,
        date: date | None = None,
    ) -> IncomeChangeResult:
        with self._logged():
            result = self._incomes.update(period, income_id, amount=amount, description=description, date=date)
            self._activity.record_income("income_updated", result.income)
        return result

    def delete_income(self, period: PeriodInput, income_id: str) -> IncomeChangeResult:
        """Delete an income. Never blocks; a resulting deficit comes with a coverage plan."""
        with self._logged():
            result = self._incomes.delete(period, income_id)
            self._activity.record_income("income_deleted", result.income)
        return result

    def preview_income_deletion(self, period: PeriodInput, income_id: str) -> IncomeChangeResult:
        return self._incomes.preview_deletion(period, income_id)

    def apply_deficit_plan(self, period: PeriodInput, plan: DeficitPlan) -> list[Envelope]:
        key = period_str(period)
        with self._logged():
            updated = self._incomes.apply_deficit_plan(key, plan)
            for step in plan.steps:
                self._activity.record_allocation(key, step.envelope_id, -step.amount)
        return updated

    def list_incomes(self, period: PeriodInput) -> list[Income]:
        return self._incomes.list_incomes(period)

    # ─── Envelopes ────────────────────────────────────────────────────────────

    def create_envelope(
        self,
        period: PeriodInput,
        name: str,
        icon: EnvelopeIcon = "Wallet",
        color: EnvelopeColor = "blue",
        category: EnvelopeCategory = "lifestyle",
        rollover: bool = False,
        rollover_strategy: RolloverStrategy = "full",
        rollover_percentage: int | None = None,
        max_rollover_amount: AmountInput | None = None,
    ) -> Envelope:
        with self._logged():
            envelope = self._envelopes.create(
                period,
                name,
                icon=icon,
                color=color,
                category=category,
                rollover=rollover,
                rollover_strategy=rollover_strategy,
                rollover_percentage=rollover_percentage,
                max_rollover_amount=max_rollover_amount,
            )
            self._activity.record_envelope("envelope_created", envelope)
        return envelope

    def get_envelope(self, period: PeriodInput, envelope_id: str) -> Envelope:
        return self._envelopes.get(period, envelope_id)

    def list_envelopes(self, period: PeriodInput) -> list[Envelope]:
        return self._envelopes.list_envelopes(period)

    def update_envelope(self, period: PeriodInput, envelope_id: str, **changes: Any) -> Envelope:
        with self._logged():
            envelope = self._envelopes.update(period, envelope_id, **changes)
            self._activity.record_envelope("envelope_updated", envelope)
        return envelope

    def reorder_envelopes(self, period: PeriodInput, ordered_ids: list[str]) -> list[Envelope]:
        return self._envelopes.reorder(period, ordered_ids)

    def delete_envelope(self, period: PeriodInput, envelope_id: str, reassign_to: str | None = None) -> None:
        key = period_str(period)
        with self._logged():
            envelope = self._envelopes.get(key, envelope_id)
            # Only ordinary expenses can be moved back; split parents keep their legs.
            reassigned = [
                transaction.id
                for transaction in self._storage.list_transactions(key)
                if transaction.envelope_id == envelope_id and not transaction.is_split
            ]
            self._envelopes.delete(key, envelope_id, reassign_to=reassign_to)
            self._activity.record_envelope(
                "envelope_deleted", envelope, reassigned_to=reassign_to, reassigned_ids=reassigned
            )

    def allocate(
        self,
        period: PeriodInput,
        envelope_id: str,
        amount: AmountInput,
        idempotency_key: str | None = None,
    ) -> Envelope:
        with self._logged():
            replayed = self._is_replay(idempotency_key)
            before = self._envelopes.get(period, envelope_id)
            envelope = self._envelopes.allocate(period, envelope_id, amount, idempotency_key=idempotency_key)
            if not replayed:
                self._activity.record_allocation(envelope.period_key, envelope_id, envelope.allocated - before.allocated)
        return envelope

    def deallocate(self, period: PeriodInput, envelope_id: str, amount: AmountInput) -> Envelope:
        with self._logged():
            before = self._envelopes.get(period, envelope_id)
            envelope = self._envelopes.deallocate(period, envelope_id, amount)
            self._activity.record_allocation(envelope.period_key, envelope_id, envelope.allocated - before.allocated)
        return envelope

    def set_allocation(self, period: PeriodInput, envelope_id: str, new_total: AmountInput) -> Envelope:
        with self._logged():
            before = self._envelopes.get(period, envelope_id)
            envelope = self._envelopes.set_allocation(period, envelope_id, new_total)
            delta = envelope.allocated - before.allocated
            if to_cents(delta) != 0:
                self._activity.record_allocation(envelope.period_key, envelope_id, delta)
        return envelope

    def to_be_budgeted(self, period: PeriodInput) -> Decimal:
        return self._envelopes.to_be_budgeted(period)

    # ─── Transactions ─────────────────────────────────────────────────────────

    def add_transaction(
        self,
        period: PeriodInput,
        envelope_id: str,
        amount: AmountInput,
        description: str = "",
        merchant: str | None = None,
        date: date | None = None,
        notes: str | None = None,
        receipt_url: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransactionResult:
        with self._logged():
            result = self._transactions.add(
                period,
                envelope_id,
                amount,
                description=description,
                merchant=merchant,
                date=date,
                notes=notes,
                receipt_url=receipt_url,
                idempotency_key=idempotency_key,
            )
            if not result.replayed:
                self._activity.record_expense("expense_added", result.transaction)
        return result

    def update_transaction(self, transaction_id: str, **patch: Any) -> TransactionResult:
        with self._logged():
            result = self._transactions.update(transaction_id, **patch)
            self._activity.record_expense("expense_updated", result.transaction)
        return result

    def delete_transaction(self, transaction_id: str) -> Transaction:
        with self._logged():
            legs = self._storage.list_splits(transaction_id)
            transaction = self._transactions.delete(transaction_id)
            self._activity.record_expense("expense_deleted", transaction, legs)
        return transaction

    def attach_receipt(self, transaction_id: str, receipt_url: str) -> Transaction:
        return self._transactions.attach_receipt(transaction_id, receipt_url)

    def get_transaction(self, transaction_id: str) -> Transaction:
        return self._transactions.get(transaction_id)

    def list_transactions(
        self,
        period: PeriodInput,
        transaction_filter: TransactionFilter | None = None,
    ) -> list[Transaction]:
        return self._transactions.list_transactions(period, transaction_filter)

    # ─── Splits ───────────────────────────────────────────────────────────────

    def create_split(
        self,
        transaction_id: str,
        total_amount: AmountInput,
        splits: Sequence[SplitLegInput],
    ) -> SplitResult:
        with self._logged():
            result = self._splits.create_split(transaction_id, total_amount, splits)
            self._activity.record_expense("expense_updated", result.transaction)
        return result

    def update_split(
        self,
        transaction_id: str,
        new_total_amount: AmountInput,
        new_splits: Sequence[SplitLegInput],
    ) -> SplitResult:
        with self._logged():
            result = self._splits.update_split(transaction_id, new_total_amount, new_splits)
            self._activity.record_expense("expense_updated", result.transaction)
        return result

    def add_split_transaction(
        self,
        period: PeriodInput,
        amount: AmountInput,
        splits: Sequence[SplitLegInput],
        description: str = "",
        merchant: str | None = None,
        date: date | None = None,
        notes: str | None = None,
        primary_envelope_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> SplitResult:
        with self._logged():
            replayed = self._is_replay(idempotency_key)
            result = self._splits.add_split_transaction(
                period,
                amount,
                splits,
                description=description,
                merchant=merchant,
                date=date,
                notes=notes,
                primary_envelope_id=primary_envelope_id,
                idempotency_key=idempotency_key,
            )
            if not replayed:
                self._activity.record_expense("expense_added", result.transaction)
        return result

    def splits_for(self, transaction_id: str) -> list[Split]:
        return self._splits.splits_for(transaction_id)

    def split_percentages(self, transaction_id: str) -> list[SplitShare]:
        return self._splits.split_percentages(transaction_id)

    # ─── Transfers ────────────────────────────────────────────────────────────

    def transfer(
        self,
        period: PeriodInput,
        from_envelope_id: str,
        to_envelope_id: str,
        amount: AmountInput,
        idempotency_key: str | None = None,
    ) -> TransferResult:
        with self._logged():
            result = self._transfers.transfer(
                period, from_envelope_id, to_envelope_id, amount, idempotency_key=idempotency_key
            )
            if not result.replayed:
                self._activity.record_transfer(
                    result.from_envelope.period_key, from_envelope_id, to_envelope_id, result.amount
                )
        return result

    # ─── Rollover ─────────────────────────────────────────────────────────────

    def advance_month(self, source: PeriodInput) -> RolloverReport:
        return self._rollover.advance_month(source)

    def copy_envelopes_to_month(self, source: PeriodInput, target: PeriodInput) -> RolloverReport:
        return self._rollover.copy_envelopes_to_month(source, target)

    def rollover_history(self, envelope_id: str | None = None) -> list[RolloverHistoryEntry]:
        return self._rollover.history(envelope_id)

    # ─── Savings goals ────────────────────────────────────────────────────────

    def create_goal(
        self,
        envelope_id: str,
        target_amount: AmountInput,
        target_date: date | None = None,
        name: str | None = None,
        priority: GoalPriority = "medium",
        auto_contribute: bool = False,
        monthly_contribution: AmountInput | None = None,
        contribution_percentage: float | None = None,
        celebration_thresholds: list[int] | None = None,
    ) -> SavingsGoal:
        return self._goals.create(
            envelope_id,
            target_amount,
            target_date=target_date,
            name=name,
            priority=priority,
            auto_contribute=auto_contribute,
            monthly_contribution=monthly_contribution,
            contribution_percentage=contribution_percentage,
            celebration_thresholds=celebration_thresholds,
        )

    def update_goal(self, goal_id: str, **changes: Any) -> SavingsGoal:
        return self._goals.update(goal_id, **changes)

    def delete_goal(self, goal_id: str) -> None:
        self._goals.delete(goal_id)

    def get_goal(self, goal_id: str) -> SavingsGoal:
        return self._goals.get(goal_id)

    def goal_for_envelope(self, envelope_id: str) -> SavingsGoal | None:
        return self._goals.for_envelope(envelope_id)

    def list_goals(self) -> list[SavingsGoal]:
        return self._goals.list_goals()

    def goal_progress(self, period: PeriodInput, envelope_id: str) -> GoalProgress:
        return self._goals.progress(period, envelope_id)

    def reached_milestones(self, goal: SavingsGoal, before_percent: Decimal, after_percent: Decimal) -> list[int]:
        return reached_milestones(goal, before_percent, after_percent)

    def run_auto_contributions(self, period: PeriodInput) -> AutoContributionReport:
        """
        Fund auto-contributing goals and record one activity entry per goal.

        Goals are funded independently; one failing goal never rolls back
        another, so the run itself is not wrapped in a single unit of work.
        """
        report = self._goals.run_auto_contributions(period)
        with self._logged():
            self._activity.record_auto_contributions(report)
        return report

    # ─── Recurring ────────────────────────────────────────────────────────────

    def add_recurring(
        self,
        envelope_id: str,
        amount: AmountInput,
        next_due_date: date,
        description: str = "",
        merchant: str | None = None,
        frequency: RecurringFrequency = "monthly",
    ) -> RecurringTransaction:
        with self._logged():
            rule = self._recurring.add(
                envelope_id,
                amount,
                next_due_date,
                description=description,
                merchant=merchant,
                frequency=frequency,
            )
            self._activity.record_recurring("recurring_created", rule)
        return rule

    def update_recurring(self, recurring_id: str, **changes: Any) -> RecurringTransaction:
        with self._logged():
            rule = self._recurring.update(recurring_id, **changes)
            self._activity.record_recurring("recurring_updated", rule)
        return rule

    def delete_recurring(self, recurring_id: str) -> None:
        with self._logged():
            rule = self._recurring.get(recurring_id)
            self._recurring.delete(recurring_id)
            self._activity.record_recurring("recurring_deleted", rule)

    def list_recurring(self) -> list[RecurringTransaction]:
        return self._recurring.list_recurring()

    def process_due_recurring(self, today: date) -> RecurringRunReport:
        return self._recurring.process_due(today)

    # ─── Activity ─────────────────────────────────────────────────────────────

    def list_activity(self, limit: int = 50, category: ActivityCategory | None = None) -> list[ActivityEntry]:
        """Most recent activity first."""
        return self._activity.list_activity(limit=limit, category=category)

    def get_activity(self, activity_id: str) -> ActivityEntry:
        return self._activity.get(activity_id)

    def undo_activity(self, activity_id: str) -> ActivityEntry:
        """Revert one activity entry. A second undo of the same entry is refused."""
        return self._activity.undo(activity_id)

    # ─── Queries ──────────────────────────────────────────────────────────────

    def envelope_summary(self, period: PeriodInput, envelope_id: str) -> EnvelopeSummary:
        return build_envelope_summary(self._envelopes.get(period, envelope_id))

    def period_summary(self, period: PeriodInput) -> PeriodSummary:
        key = period_str(period)
        with self._storage.unit_of_work():
            return build_period_summary(key, self._storage.list_incomes(key), self._storage.list_envelopes(key))

    def check_integrity(self, period: PeriodInput, repair: bool = False) -> IntegrityReport:
        return self._integrity.check(period, repair=repair)
