# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Tests for carrying balances into later months."""

from __future__ import annotations

from decimal import Decimal

import pytest

from envelope_ledger import (
    BudgetLedger,
    Envelope,
    LedgerConfig,
    LedgerValidationError,
    LimitExceededError,
    SavingsGoal,
    compute_carry_over,
)

PERIOD = "2026-03"
NEXT_PERIOD = "2026-04"


def _envelope(**overrides: object) -> Envelope:
    fields: dict[str, object] = {
        "id": "env-1",
        "period_key": PERIOD,
        "name": "Courses",
        "allocated": Decimal("200.00"),
        "spent": Decimal("120.00"),
        "rollover": True,
    }
    fields.update(overrides)
    return Envelope(**fields)


# ---------------------------------------------------------------------------
# TestComputeCarryOver
# ---------------------------------------------------------------------------


class TestComputeCarryOver:
    def test_full_strategy_carries_net_balance(self) -> None:
        carry = compute_carry_over(_envelope(rollover_strategy="full"))
        assert carry is not None
        assert carry.amount == Decimal("80.00")
        assert carry.is_capped is False

    def test_percentage_strategy_rounds_to_the_cent(self) -> None:
        carry = compute_carry_over(
            _envelope(rollover_strategy="percentage", rollover_percentage=33, spent=Decimal("0.01"))
        )
        assert carry is not None
        assert carry.amount == Decimal("66.00")

    def test_capped_strategy_clamps_and_flags(self) -> None:
        carry = compute_carry_over(_envelope(rollover_strategy="capped", max_rollover_amount=Decimal("50.00")))
        assert carry is not None
        assert carry.amount == Decimal("50.00")
        assert carry.is_capped is True

    def test_capped_strategy_below_cap_is_not_flagged(self) -> None:
        carry = compute_carry_over(_envelope(rollover_strategy="capped", max_rollover_amount=Decimal("100.00")))
        assert carry is not None
        assert carry.amount == Decimal("80.00")
        assert carry.is_capped is False

    def test_none_strategy_and_disabled_rollover_are_excluded(self) -> None:
        assert compute_carry_over(_envelope(rollover_strategy="none")) is None
        assert compute_carry_over(_envelope(rollover=False)) is None

    def test_overspent_envelope_carries_zero(self) -> None:
        carry = compute_carry_over(_envelope(spent=Decimal("250.00")))
        assert carry is not None
        assert carry.amount == Decimal("0.00")

    def test_active_goal_caps_the_carry(self) -> None:
        goal = SavingsGoal(id="g-1", envelope_id="env-1", target_amount=Decimal("30.00"))
        carry = compute_carry_over(_envelope(), goal)
        assert carry is not None
        assert carry.amount == Decimal("30.00")
        assert carry.is_capped is True

    def test_paused_goal_does_not_cap(self) -> None:
        goal = SavingsGoal(id="g-1", envelope_id="env-1", target_amount=Decimal("30.00"), is_paused=True)
        carry = compute_carry_over(_envelope(), goal)
        assert carry is not None
        assert carry.amount == Decimal("80.00")


# ---------------------------------------------------------------------------
# TestAdvanceMonth
# ---------------------------------------------------------------------------


class TestAdvanceMonth:
    def test_scenario_capped_rollover_is_recorded(self, funded: BudgetLedger) -> None:
        envelope = funded.create_envelope(
            PERIOD, "Courses", rollover=True, rollover_strategy="capped", max_rollover_amount="50.00"
        )
        funded.allocate(PERIOD, envelope.id, "200")
        funded.add_transaction(PERIOD, envelope.id, "120")

        report = funded.advance_month(PERIOD)

        assert report.target_month_key == NEXT_PERIOD
        assert [carry.amount for carry in report.carried] == [Decimal("50.00")]
        assert report.carried[0].is_capped is True
        history = funded.rollover_history(envelope.id)
        assert len(history) == 1
        assert history[0].strategy == "capped"
        assert history[0].amount == Decimal("50.00")
        assert history[0].source_month_key == PERIOD

        seeded = funded.get_envelope(NEXT_PERIOD, envelope.id)
        assert seeded.allocated == Decimal("50.00")
        assert seeded.spent == Decimal("0.00")
        assert seeded.rollover_strategy == "capped"
        assert seeded.max_rollover_amount == Decimal("50.00")

    def test_to_be_budgeted_stays_balanced_in_target(self, funded: BudgetLedger) -> None:
        envelope = funded.create_envelope(PERIOD, "Savings", rollover=True)
        funded.allocate(PERIOD, envelope.id, "300")
        report = funded.advance_month(PERIOD)

        assert report.total_carried == Decimal("300.00")
        assert funded.to_be_budgeted(NEXT_PERIOD) == Decimal("0.00")
        incomes = funded.list_incomes(NEXT_PERIOD)
        assert [(income.source, income.amount) for income in incomes] == [("rollover", Decimal("300.00"))]

    def test_non_rollover_envelopes_are_not_copied(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        funded.update_envelope(PERIOD, loisirs.id, rollover=True, rollover_strategy="none")
        report = funded.advance_month(PERIOD)
        assert report.carried == []
        assert funded.list_envelopes(NEXT_PERIOD) == []
        assert funded.list_incomes(NEXT_PERIOD) == []

    def test_overdraft_is_signalled_separately(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "100")
        funded.add_transaction(PERIOD, courses.id, "130")
        report = funded.advance_month(PERIOD)
        assert [(signal.envelope_name, signal.overdraft_amount) for signal in report.overdrafts] == [
            ("Courses", Decimal("30.00"))
        ]

    def test_rerunning_is_idempotent(self, funded: BudgetLedger) -> None:
        envelope = funded.create_envelope(PERIOD, "Savings", rollover=True)
        funded.allocate(PERIOD, envelope.id, "100")
        funded.advance_month(PERIOD)
        second = funded.advance_month(PERIOD)

        assert second.skipped == [envelope.id]
        assert second.carried == []
        assert funded.get_envelope(NEXT_PERIOD, envelope.id).allocated == Decimal("100.00")
        assert len(funded.rollover_history()) == 1

    def test_existing_target_envelope_is_topped_up(self, ledger: BudgetLedger) -> None:
        ledger.add_income("2026-02", "100")
        envelope = ledger.create_envelope("2026-02", "Savings", rollover=True)
        ledger.allocate("2026-02", envelope.id, "100")
        ledger.advance_month("2026-02")
        ledger.add_transaction(PERIOD, envelope.id, "10")

        ledger.copy_envelopes_to_month("2026-02", NEXT_PERIOD)
        ledger.add_transaction(NEXT_PERIOD, envelope.id, "5")
        ledger.copy_envelopes_to_month(PERIOD, NEXT_PERIOD)

        target = ledger.get_envelope(NEXT_PERIOD, envelope.id)
        assert target.allocated == Decimal("190.00")
        assert target.spent == Decimal("5.00")
        assert ledger.to_be_budgeted(NEXT_PERIOD) == Decimal("0.00")

    def test_copy_to_arbitrary_month(self, funded: BudgetLedger) -> None:
        envelope = funded.create_envelope(PERIOD, "Savings", rollover=True)
        funded.allocate(PERIOD, envelope.id, "40")
        report = funded.copy_envelopes_to_month(PERIOD, "2026-06")
        assert report.target_month_key == "2026-06"
        assert funded.get_envelope("2026-06", envelope.id).allocated == Decimal("40.00")

    def test_same_source_and_target_is_rejected(self, funded: BudgetLedger) -> None:
        with pytest.raises(LedgerValidationError):
            funded.copy_envelopes_to_month(PERIOD, PERIOD)

    def test_failed_run_leaves_no_history(self) -> None:
        ledger = BudgetLedger(config=LedgerConfig(max_envelopes_per_period=1))
        ledger.add_income(PERIOD, "100")
        first = ledger.create_envelope(PERIOD, "First", rollover=True)
        ledger.allocate(PERIOD, first.id, "10")
        ledger.create_envelope(NEXT_PERIOD, "Occupied")

        with pytest.raises(LimitExceededError):
            ledger.advance_month(PERIOD)
        assert ledger.rollover_history() == []
        assert ledger.list_incomes(NEXT_PERIOD) == []
        assert [envelope.name for envelope in ledger.list_envelopes(NEXT_PERIOD)] == ["Occupied"]

    def test_goal_caps_the_seeded_allocation(self, funded: BudgetLedger) -> None:
        envelope = funded.create_envelope(PERIOD, "Holiday", category="savings", rollover=True)
        funded.allocate(PERIOD, envelope.id, "500")
        funded.create_goal(envelope.id, "400")
        report = funded.advance_month(PERIOD)
        assert report.carried[0].amount == Decimal("400.00")
        assert report.history[0].is_capped is True
