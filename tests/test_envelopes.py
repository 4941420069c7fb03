# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Tests for envelope lifecycle and allocation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from envelope_ledger import (
    BudgetLedger,
    Envelope,
    InconsistentStateError,
    InsufficientFundsError,
    LedgerConfig,
    LedgerValidationError,
    LimitExceededError,
    NotFoundError,
)

PERIOD = "2026-03"
NEXT_PERIOD = "2026-04"


# ---------------------------------------------------------------------------
# TestEnvelopeLifecycle
# ---------------------------------------------------------------------------


class TestEnvelopeLifecycle:
    def test_new_envelope_is_empty(self, funded: BudgetLedger) -> None:
        envelope = funded.create_envelope(PERIOD, "  Courses ", category="essential")
        assert envelope.name == "Courses"
        assert envelope.allocated == Decimal("0.00")
        assert envelope.spent == Decimal("0.00")
        assert envelope.user_id == "user-1"
        assert envelope.household_id == "house-1"

    def test_creating_an_envelope_creates_the_period_lazily(self, ledger: BudgetLedger) -> None:
        assert ledger.list_periods() == []
        ledger.create_envelope(PERIOD, "Courses")
        assert ledger.list_periods() == [PERIOD]

    def test_blank_name_is_rejected(self, funded: BudgetLedger) -> None:
        with pytest.raises(LedgerValidationError):
            funded.create_envelope(PERIOD, "   ")

    def test_unknown_icon_is_rejected(self, funded: BudgetLedger) -> None:
        with pytest.raises(LedgerValidationError):
            funded.create_envelope(PERIOD, "Courses", icon="Rocket")  # type: ignore[arg-type]

    def test_capped_strategy_requires_a_cap(self, funded: BudgetLedger) -> None:
        with pytest.raises(LedgerValidationError):
            funded.create_envelope(PERIOD, "Courses", rollover=True, rollover_strategy="capped")

    def test_envelope_cap_is_enforced(self) -> None:
        ledger = BudgetLedger(config=LedgerConfig(max_envelopes_per_period=2))
        ledger.create_envelope(PERIOD, "One")
        ledger.create_envelope(PERIOD, "Two")
        with pytest.raises(LimitExceededError) as excinfo:
            ledger.create_envelope(PERIOD, "Three")
        assert excinfo.value.limit == 2
        assert len(ledger.list_envelopes(PERIOD)) == 2

    def test_default_cap_is_fifty(self, ledger: BudgetLedger) -> None:
        for index in range(50):
            ledger.create_envelope(PERIOD, f"Envelope {index}")
        with pytest.raises(LimitExceededError):
            ledger.create_envelope(PERIOD, "One too many")

    def test_update_changes_descriptive_fields(self, funded: BudgetLedger, courses: Envelope) -> None:
        updated = funded.update_envelope(PERIOD, courses.id, name="Groceries", color="teal")
        assert updated.name == "Groceries"
        assert updated.color == "teal"
        assert funded.get_envelope(PERIOD, courses.id).name == "Groceries"

    def test_update_refuses_money_fields(self, funded: BudgetLedger, courses: Envelope) -> None:
        with pytest.raises(LedgerValidationError):
            funded.update_envelope(PERIOD, courses.id, allocated="100")

    def test_reorder_sets_positions(self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope) -> None:
        reordered = funded.reorder_envelopes(PERIOD, [loisirs.id, courses.id])
        assert [envelope.id for envelope in reordered] == [loisirs.id, courses.id]

    def test_reorder_requires_every_envelope(self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope) -> None:
        with pytest.raises(LedgerValidationError):
            funded.reorder_envelopes(PERIOD, [courses.id])

    def test_unknown_envelope_raises_not_found(self, funded: BudgetLedger) -> None:
        with pytest.raises(NotFoundError):
            funded.get_envelope(PERIOD, "missing")


# ---------------------------------------------------------------------------
# TestAllocation
# ---------------------------------------------------------------------------


class TestAllocation:
    def test_scenario_allocate_reduces_to_be_budgeted(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "500.00")
        assert funded.to_be_budgeted(PERIOD) == Decimal("1500.00")
        assert funded.get_envelope(PERIOD, courses.id).allocated == Decimal("500.00")

    def test_allocating_exactly_to_be_budgeted_reaches_zero(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, funded.to_be_budgeted(PERIOD))
        assert funded.to_be_budgeted(PERIOD) == Decimal("0.00")

    def test_allocating_one_cent_more_fails(self, funded: BudgetLedger, courses: Envelope) -> None:
        with pytest.raises(InsufficientFundsError) as excinfo:
            funded.allocate(PERIOD, courses.id, funded.to_be_budgeted(PERIOD) + Decimal("0.01"))
        assert excinfo.value.available == Decimal("2000.00")
        assert "max is €2000.00" in str(excinfo.value)
        assert funded.get_envelope(PERIOD, courses.id).allocated == Decimal("0.00")

    @pytest.mark.parametrize("amount", ["0", "-10", "abc"])
    def test_allocate_rejects_invalid_amounts(self, funded: BudgetLedger, courses: Envelope, amount: str) -> None:
        with pytest.raises(LedgerValidationError):
            funded.allocate(PERIOD, courses.id, amount)

    def test_allocate_then_deallocate_round_trips(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "120.00")
        funded.allocate(PERIOD, courses.id, "33.33")
        funded.deallocate(PERIOD, courses.id, "33.33")
        assert funded.get_envelope(PERIOD, courses.id).allocated == Decimal("120.00")
        assert funded.to_be_budgeted(PERIOD) == Decimal("1880.00")

    def test_cannot_deallocate_spent_money(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "100")
        funded.add_transaction(PERIOD, courses.id, "70")
        with pytest.raises(InsufficientFundsError) as excinfo:
            funded.deallocate(PERIOD, courses.id, "30.01")
        assert excinfo.value.available == Decimal("30.00")
        funded.deallocate(PERIOD, courses.id, "30")
        assert funded.get_envelope(PERIOD, courses.id).allocated == Decimal("70.00")

    def test_set_allocation_moves_by_the_difference(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.set_allocation(PERIOD, courses.id, "300")
        assert funded.to_be_budgeted(PERIOD) == Decimal("1700.00")
        funded.set_allocation(PERIOD, courses.id, "250")
        assert funded.get_envelope(PERIOD, courses.id).allocated == Decimal("250.00")
        assert funded.to_be_budgeted(PERIOD) == Decimal("1750.00")

    def test_set_allocation_bounds(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "100")
        funded.add_transaction(PERIOD, courses.id, "60")
        with pytest.raises(InsufficientFundsError):
            funded.set_allocation(PERIOD, courses.id, "59.99")
        with pytest.raises(InsufficientFundsError):
            funded.set_allocation(PERIOD, courses.id, "2000.01")
        funded.set_allocation(PERIOD, courses.id, "2000.00")
        assert funded.to_be_budgeted(PERIOD) == Decimal("0.00")

    def test_allocate_idempotency_key_applies_once(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "50", idempotency_key="alloc-1")
        funded.allocate(PERIOD, courses.id, "50", idempotency_key="alloc-1")
        assert funded.get_envelope(PERIOD, courses.id).allocated == Decimal("50.00")

    def test_periods_are_independent(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "100")
        assert funded.to_be_budgeted(NEXT_PERIOD) == Decimal("0.00")
        with pytest.raises(NotFoundError):
            funded.allocate(NEXT_PERIOD, courses.id, "1")


# ---------------------------------------------------------------------------
# TestEnvelopeDeletion
# ---------------------------------------------------------------------------


class TestEnvelopeDeletion:
    def test_delete_releases_allocation(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "400")
        funded.delete_envelope(PERIOD, courses.id)
        assert funded.to_be_budgeted(PERIOD) == Decimal("2000.00")
        assert funded.list_envelopes(PERIOD) == []

    def test_delete_refused_while_a_split_leg_references_it(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        funded.add_split_transaction(PERIOD, "50", [(courses.id, "30"), (loisirs.id, "20")])
        with pytest.raises(InconsistentStateError):
            funded.delete_envelope(PERIOD, loisirs.id)
        with pytest.raises(InconsistentStateError):
            funded.delete_envelope(PERIOD, loisirs.id, reassign_to=courses.id)
        assert funded.get_envelope(PERIOD, loisirs.id).spent == Decimal("20.00")

    def test_delete_refused_while_expenses_reference_it(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.add_transaction(PERIOD, courses.id, "12")
        with pytest.raises(InconsistentStateError):
            funded.delete_envelope(PERIOD, courses.id)

    def test_delete_with_reassignment_moves_expenses(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "12.40")
        funded.delete_envelope(PERIOD, courses.id, reassign_to=loisirs.id)
        assert funded.get_transaction(result.transaction.id).envelope_id == loisirs.id
        assert funded.get_envelope(PERIOD, loisirs.id).spent == Decimal("12.40")

    def test_reassignment_never_moves_spent_of_a_split_parent(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        vacances = funded.create_envelope(PERIOD, "Vacances", category="savings")
        split = funded.add_split_transaction(PERIOD, "50", [(loisirs.id, "30"), (vacances.id, "20")])
        # Rows written before primaries were kept among the legs.
        funded.storage.save_transaction(split.transaction.model_copy(update={"envelope_id": courses.id}))

        funded.delete_envelope(PERIOD, courses.id, reassign_to=loisirs.id)

        assert funded.get_transaction(split.transaction.id).envelope_id == loisirs.id
        assert funded.get_envelope(PERIOD, loisirs.id).spent == Decimal("30.00")
        assert funded.check_integrity(PERIOD).is_consistent

    def test_goal_is_deleted_with_the_last_envelope_row(self, funded: BudgetLedger, courses: Envelope) -> None:
        goal = funded.create_goal(courses.id, "500")
        funded.delete_envelope(PERIOD, courses.id)
        assert funded.goal_for_envelope(courses.id) is None
        with pytest.raises(NotFoundError):
            funded.get_goal(goal.id)

    def test_goal_survives_while_envelope_recurs_in_another_period(self, funded: BudgetLedger) -> None:
        savings = funded.create_envelope(PERIOD, "Holiday", rollover=True)
        funded.allocate(PERIOD, savings.id, "100")
        funded.create_goal(savings.id, "1000")
        funded.advance_month(PERIOD)
        funded.delete_envelope(PERIOD, savings.id)
        assert funded.goal_for_envelope(savings.id) is not None
