# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Savings goals attached to envelopes.

A goal belongs to exactly one envelope and persists across periods for as
long as the envelope recurs. Progress is measured against the envelope's
allocation in a given period. Goals also cap how much the rollover engine
carries forward, and can be funded automatically from "to be budgeted" in
priority order.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel

from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import EnvelopeStore, period_str
from envelope_ledger.errors import InconsistentStateError, LedgerError, LedgerValidationError, NotFoundError
from envelope_ledger.events import EventBus
from envelope_ledger.money import ZERO, AmountInput, Money, exceeds, percent_of, quantize, to_cents
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.types import (
    GOAL_PRIORITY_ORDER,
    GoalPriority,
    LedgerScope,
    PeriodKey,
    SavingsGoal,
    build_record,
)

logger = logging.getLogger("envelope_ledger.goals")

_HUNDRED = Decimal("100")

_UPDATABLE_FIELDS = frozenset(
    {
        "target_amount",
        "target_date",
        "name",
        "priority",
        "auto_contribute",
        "monthly_contribution",
        "contribution_percentage",
        "celebration_thresholds",
        "is_paused",
    }
)


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class GoalProgress(BaseModel, frozen=True):
    goal_id: str
    envelope_id: str
    period_key: str
    allocated: Money
    target_amount: Money
    percent_complete: Decimal
    is_complete: bool
    remaining: Money
    months_remaining: Optional[int] = None
    suggested_monthly: Optional[Money] = None


AutoContributionStatus = Literal["allocated", "skipped", "error"]


class AutoContributionEntry(BaseModel, frozen=True):
    goal_id: str
    envelope_id: str
    status: AutoContributionStatus
    amount: Money = ZERO
    reason: Optional[str] = None
    milestones_reached: list[int] = []


class AutoContributionReport(BaseModel, frozen=True):
    period_key: str
    entries: list[AutoContributionEntry]
    total_allocated: Money


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def progress_percent(allocated: Decimal, target_amount: Decimal) -> Decimal:
    """``allocated / target`` as a percentage, capped at 100."""
    percent = percent_of(allocated, target_amount) or Decimal("0")
    return min(percent, _HUNDRED)


def reached_milestones(goal: SavingsGoal, before_percent: Decimal, after_percent: Decimal) -> list[int]:
    """Celebration thresholds crossed while progress moved from ``before_percent`` to ``after_percent``."""
    return [
        threshold
        for threshold in goal.celebration_thresholds
        if before_percent < threshold <= after_percent
    ]


def months_between(period: PeriodKey, target_date: date) -> int:
    """Whole months from ``period`` up to the month of ``target_date``. Never negative."""
    difference = (target_date.year * 12 + target_date.month) - (period.year * 12 + period.month)
    return max(0, difference)


def is_rollover_cap_active(goal: SavingsGoal | None) -> bool:
    return goal is not None and not goal.is_paused and to_cents(goal.target_amount) > 0


def sort_by_priority(goals: list[SavingsGoal]) -> list[SavingsGoal]:
    return sorted(goals, key=lambda goal: (GOAL_PRIORITY_ORDER[goal.priority], goal.created_at))


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class SavingsGoalTracker:
    """Create, edit and fund savings goals."""

    def __init__(
        self,
        storage: LedgerStorage,
        config: LedgerConfig,
        scope: LedgerScope,
        events: EventBus,
        envelopes: EnvelopeStore,
    ) -> None:
        self._storage = storage
        self._config = config
        self._scope = scope
        self._events = events
        self._envelopes = envelopes

    # ─── CRUD ─────────────────────────────────────────────────────────────────

    def get(self, goal_id: str) -> SavingsGoal:
        goal = self._storage.get_goal(goal_id)
        if goal is None:
            raise NotFoundError("goal", goal_id)
        return goal

    def for_envelope(self, envelope_id: str) -> SavingsGoal | None:
        return self._storage.get_goal_by_envelope(envelope_id)

    def list_goals(self) -> list[SavingsGoal]:
        return sort_by_priority(self._storage.list_goals())

    def create(
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
        """
        Attach a goal to an envelope that exists in at least one period.

        Raises InconsistentStateError if the envelope already has a goal.
        """
        fields: dict[str, Any] = {
            "id": str(uuid4()),
            "envelope_id": envelope_id,
            "target_amount": target_amount,
            "target_date": target_date,
            "name": name,
            "priority": priority,
            "auto_contribute": auto_contribute,
            "monthly_contribution": monthly_contribution,
            "contribution_percentage": contribution_percentage,
            "user_id": self._scope.user_id,
            "household_id": self._scope.household_id,
        }
        if celebration_thresholds is not None:
            fields["celebration_thresholds"] = celebration_thresholds
        goal = self._validated(build_record(SavingsGoal, **fields))

        with self._storage.unit_of_work():
            if not self._storage.periods_with_envelope(envelope_id):
                raise NotFoundError("envelope", envelope_id)
            if self._storage.get_goal_by_envelope(envelope_id) is not None:
                raise InconsistentStateError(f"Envelope {envelope_id!r} already has a savings goal.")
            self._storage.save_goal(goal)

        logger.info(
            "goal_created",
            extra={"goal_id": goal.id, "envelope_id": envelope_id, "target_amount": str(goal.target_amount)},
        )
        self._events.emit("goal_changed", entity_id=goal.id)
        return goal

    def update(self, goal_id: str, **changes: Any) -> SavingsGoal:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise LedgerValidationError(
                f"Cannot update goal field(s): {', '.join(sorted(unknown))}.",
                field=sorted(unknown)[0],
            )
        with self._storage.unit_of_work():
            current = self.get(goal_id)
            updated = self._validated(build_record(SavingsGoal, **{**current.model_dump(), **changes}))
            self._storage.save_goal(updated)

        logger.info("goal_updated", extra={"goal_id": goal_id, "fields": sorted(changes)})
        self._events.emit("goal_changed", entity_id=goal_id)
        return updated

    def delete(self, goal_id: str) -> None:
        """Remove a goal. The envelope and its money are untouched."""
        with self._storage.unit_of_work():
            goal = self.get(goal_id)
            self._storage.delete_goal(goal_id)

        logger.info("goal_deleted", extra={"goal_id": goal_id, "envelope_id": goal.envelope_id})
        self._events.emit("goal_deleted", entity_id=goal_id)

    # ─── Progress ─────────────────────────────────────────────────────────────

    def progress(self, period: PeriodKey | str, envelope_id: str) -> GoalProgress:
        key = period_str(period)
        goal = self.for_envelope(envelope_id)
        if goal is None:
            raise NotFoundError("goal", envelope_id)
        envelope = self._envelopes.get(key, envelope_id)

        remaining = max(ZERO, goal.target_amount - envelope.allocated)
        months_remaining = None
        suggested_monthly = None
        if goal.target_date is not None:
            months_remaining = months_between(PeriodKey.parse(key), goal.target_date)
            suggested_monthly = quantize(remaining / months_remaining) if months_remaining else remaining

        return GoalProgress(
            goal_id=goal.id,
            envelope_id=envelope_id,
            period_key=key,
            allocated=envelope.allocated,
            target_amount=goal.target_amount,
            percent_complete=progress_percent(envelope.allocated, goal.target_amount),
            is_complete=not exceeds(goal.target_amount, envelope.allocated),
            remaining=remaining,
            months_remaining=months_remaining,
            suggested_monthly=suggested_monthly,
        )

    # ─── Auto-contribution ────────────────────────────────────────────────────

    def run_auto_contributions(self, period: PeriodKey | str) -> AutoContributionReport:
        """
        Fund auto-contributing goals from "to be budgeted", essential first.

        Each contribution is a plain allocate and inherits its bounds. A
        percentage contribution is taken from "to be budgeted" as it stood
        when the run started. A goal is funded at most once per period.
        """
        key = period_str(period)
        starting_to_be_budgeted = self._envelopes.to_be_budgeted(key)
        entries: list[AutoContributionEntry] = []

        for goal in sort_by_priority(self._storage.list_goals()):
            entry = self._contribute(key, goal, starting_to_be_budgeted)
            entries.append(entry)
            if entry.status == "skipped":
                logger.warning(
                    "goal_contribution_skipped",
                    extra={"goal_id": goal.id, "period_key": key, "reason": entry.reason},
                )

        report = AutoContributionReport(
            period_key=key,
            entries=entries,
            total_allocated=sum((entry.amount for entry in entries), ZERO),
        )
        logger.info(
            "auto_contributions_completed",
            extra={"period_key": key, "total_allocated": str(report.total_allocated)},
        )
        return report

    def _contribute(self, period_key: str, goal: SavingsGoal, starting_to_be_budgeted: Decimal) -> AutoContributionEntry:
        def skipped(reason: str) -> AutoContributionEntry:
            return AutoContributionEntry(
                goal_id=goal.id, envelope_id=goal.envelope_id, status="skipped", reason=reason
            )

        if goal.is_paused:
            return skipped("paused")
        if not goal.auto_contribute:
            return skipped("auto-contribution disabled")
        idempotency_key = f"auto-contribution:{goal.id}:{period_key}"
        if self._storage.get_operation(idempotency_key) is not None:
            return skipped("already contributed this period")

        envelope = self._storage.get_envelope(period_key, goal.envelope_id)
        if envelope is None:
            return skipped("envelope not in period")

        remaining = goal.target_amount - envelope.allocated
        if to_cents(remaining) <= 0:
            return skipped("goal complete")

        if goal.monthly_contribution is not None:
            wanted = goal.monthly_contribution
        else:
            wanted = quantize(
                max(ZERO, starting_to_be_budgeted) * Decimal(str(goal.contribution_percentage)) / _HUNDRED
            )
        amount = min(wanted, remaining, self._envelopes.to_be_budgeted(period_key))
        if to_cents(amount) <= 0:
            return skipped("nothing to be budgeted")

        before = progress_percent(envelope.allocated, goal.target_amount)
        try:
            funded = self._envelopes.allocate(period_key, goal.envelope_id, amount, idempotency_key=idempotency_key)
        except LedgerError as exc:
            logger.warning(
                "goal_contribution_failed",
                extra={"goal_id": goal.id, "period_key": period_key, "code": exc.code},
            )
            return AutoContributionEntry(
                goal_id=goal.id, envelope_id=goal.envelope_id, status="error", reason=exc.message
            )

        milestones = reached_milestones(goal, before, progress_percent(funded.allocated, goal.target_amount))
        if milestones:
            logger.info("goal_milestone_reached", extra={"goal_id": goal.id, "milestones": milestones})
        return AutoContributionEntry(
            goal_id=goal.id,
            envelope_id=goal.envelope_id,
            status="allocated",
            amount=amount,
            milestones_reached=milestones,
        )

    # ─── Private helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _validated(goal: SavingsGoal) -> SavingsGoal:
        if goal.auto_contribute and goal.monthly_contribution is None and goal.contribution_percentage is None:
            raise LedgerValidationError(
                "Auto-contribution needs a monthly_contribution or a contribution_percentage.",
                field="auto_contribute",
            )
        return goal
