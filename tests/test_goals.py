# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Tests for savings goals and auto-contribution."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from envelope_ledger import (
    BudgetLedger,
    Envelope,
    InconsistentStateError,
    LedgerValidationError,
    NotFoundError,
    SavingsGoal,
    reached_milestones,
)

PERIOD = "2026-03"


@pytest.fixture
def holiday(funded: BudgetLedger) -> Envelope:
    return funded.create_envelope(PERIOD, "Holiday", icon="Plane", category="savings")


# ---------------------------------------------------------------------------
# TestGoalLifecycle
# ---------------------------------------------------------------------------


class TestGoalLifecycle:
    def test_create_and_fetch(self, funded: BudgetLedger, holiday: Envelope) -> None:
        goal = funded.create_goal(holiday.id, "1200", name="Lisbon", priority="high")
        assert funded.get_goal(goal.id).name == "Lisbon"
        assert funded.goal_for_envelope(holiday.id) == goal
        assert goal.celebration_thresholds == [100]

    def test_one_goal_per_envelope(self, funded: BudgetLedger, holiday: Envelope) -> None:
        funded.create_goal(holiday.id, "1200")
        with pytest.raises(InconsistentStateError):
            funded.create_goal(holiday.id, "500")

    def test_envelope_must_exist(self, funded: BudgetLedger) -> None:
        with pytest.raises(NotFoundError):
            funded.create_goal("missing", "100")

    def test_auto_contribution_needs_an_amount_rule(self, funded: BudgetLedger, holiday: Envelope) -> None:
        with pytest.raises(LedgerValidationError):
            funded.create_goal(holiday.id, "1200", auto_contribute=True)

    def test_thresholds_are_validated_and_sorted(self, funded: BudgetLedger, holiday: Envelope) -> None:
        goal = funded.create_goal(holiday.id, "1200", celebration_thresholds=[100, 25, 50, 25])
        assert goal.celebration_thresholds == [25, 50, 100]
        with pytest.raises(LedgerValidationError):
            funded.update_goal(goal.id, celebration_thresholds=[0])

    def test_update_and_delete(self, funded: BudgetLedger, holiday: Envelope) -> None:
        goal = funded.create_goal(holiday.id, "1200")
        assert funded.update_goal(goal.id, is_paused=True).is_paused is True
        funded.delete_goal(goal.id)
        assert funded.goal_for_envelope(holiday.id) is None
        assert funded.get_envelope(PERIOD, holiday.id).name == "Holiday"


# ---------------------------------------------------------------------------
# TestGoalProgress
# ---------------------------------------------------------------------------


class TestGoalProgress:
    def test_progress_uses_the_allocation(self, funded: BudgetLedger, holiday: Envelope) -> None:
        funded.create_goal(holiday.id, "1000", target_date=date(2026, 8, 15))
        funded.allocate(PERIOD, holiday.id, "250")
        progress = funded.goal_progress(PERIOD, holiday.id)

        assert progress.percent_complete == Decimal("25.00")
        assert progress.is_complete is False
        assert progress.remaining == Decimal("750.00")
        assert progress.months_remaining == 5
        assert progress.suggested_monthly == Decimal("150.00")

    def test_progress_is_capped_at_one_hundred(self, funded: BudgetLedger, holiday: Envelope) -> None:
        funded.create_goal(holiday.id, "100")
        funded.allocate(PERIOD, holiday.id, "150")
        progress = funded.goal_progress(PERIOD, holiday.id)
        assert progress.percent_complete == Decimal("100")
        assert progress.is_complete is True
        assert progress.remaining == Decimal("0.00")
        assert progress.months_remaining is None

    def test_milestones_crossed(self) -> None:
        goal = SavingsGoal(id="g-1", envelope_id="e-1", target_amount=Decimal("100"), celebration_thresholds=[25, 50, 100])
        assert reached_milestones(goal, Decimal("10"), Decimal("60")) == [25, 50]
        assert reached_milestones(goal, Decimal("50"), Decimal("60")) == []
        assert reached_milestones(goal, Decimal("99.99"), Decimal("100")) == [100]


# ---------------------------------------------------------------------------
# TestAutoContributions
# ---------------------------------------------------------------------------


class TestAutoContributions:
    def test_priority_order_when_funds_are_short(self, ledger: BudgetLedger) -> None:
        ledger.add_income(PERIOD, "300")
        low = ledger.create_envelope(PERIOD, "Gadgets")
        essential = ledger.create_envelope(PERIOD, "Emergency fund", category="savings")
        ledger.create_goal(low.id, "1000", priority="low", auto_contribute=True, monthly_contribution="200")
        ledger.create_goal(essential.id, "1000", priority="essential", auto_contribute=True, monthly_contribution="200")

        report = ledger.run_auto_contributions(PERIOD)

        by_envelope = {entry.envelope_id: entry for entry in report.entries}
        assert by_envelope[essential.id].amount == Decimal("200.00")
        assert by_envelope[low.id].amount == Decimal("100.00")
        assert report.total_allocated == Decimal("300.00")
        assert ledger.to_be_budgeted(PERIOD) == Decimal("0.00")

    def test_paused_and_manual_goals_are_skipped(self, funded: BudgetLedger, holiday: Envelope, courses: Envelope) -> None:
        funded.create_goal(holiday.id, "1000", auto_contribute=True, monthly_contribution="100")
        goal = funded.goal_for_envelope(holiday.id)
        assert goal is not None
        funded.update_goal(goal.id, is_paused=True)
        funded.create_goal(courses.id, "1000")

        report = funded.run_auto_contributions(PERIOD)

        assert {entry.status for entry in report.entries} == {"skipped"}
        assert report.total_allocated == Decimal("0.00")

    def test_percentage_contribution_and_remaining_cap(self, funded: BudgetLedger, holiday: Envelope) -> None:
        funded.create_goal(holiday.id, "150", auto_contribute=True, contribution_percentage=10)
        report = funded.run_auto_contributions(PERIOD)
        assert report.entries[0].amount == Decimal("150.00")
        assert funded.get_envelope(PERIOD, holiday.id).allocated == Decimal("150.00")

    def test_runs_at_most_once_per_period(self, funded: BudgetLedger, holiday: Envelope) -> None:
        funded.create_goal(holiday.id, "1000", auto_contribute=True, monthly_contribution="100")
        funded.run_auto_contributions(PERIOD)
        second = funded.run_auto_contributions(PERIOD)
        assert second.entries[0].status == "skipped"
        assert funded.get_envelope(PERIOD, holiday.id).allocated == Decimal("100.00")

    def test_milestones_reported_on_contribution(self, funded: BudgetLedger, holiday: Envelope) -> None:
        funded.create_goal(
            holiday.id, "200", auto_contribute=True, monthly_contribution="100", celebration_thresholds=[50, 100]
        )
        report = funded.run_auto_contributions(PERIOD)
        assert report.entries[0].milestones_reached == [50]
