# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Tests for expenses, spending alerts and duplicate detection."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from envelope_ledger import (
    BudgetLedger,
    Envelope,
    LedgerValidationError,
    NotFoundError,
    TransactionFilter,
)
from envelope_ledger.alerts import evaluate_spending_alert
from envelope_ledger.transaction import find_possible_duplicate
from envelope_ledger.types import Transaction

PERIOD = "2026-03"


def _spent(ledger: BudgetLedger, envelope: Envelope) -> Decimal:
    return ledger.get_envelope(PERIOD, envelope.id).spent


# ---------------------------------------------------------------------------
# TestAddTransaction
# ---------------------------------------------------------------------------


class TestAddTransaction:
    def test_scenario_expense_under_budget_has_no_alert(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "500.00")
        result = funded.add_transaction(PERIOD, courses.id, "45.30", description="Weekly shop")
        assert _spent(funded, courses) == Decimal("45.30")
        assert result.alert is None
        assert result.transaction.is_split is False
        assert funded.to_be_budgeted(PERIOD) == Decimal("1500.00")

    def test_crossing_eighty_percent_warns(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "100")
        funded.add_transaction(PERIOD, courses.id, "70")
        result = funded.add_transaction(PERIOD, courses.id, "15")
        assert result.alert is not None
        assert result.alert.level == "warning"
        assert result.alert.percent_used == Decimal("85.00")

    def test_staying_above_eighty_percent_does_not_warn_again(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "100")
        funded.add_transaction(PERIOD, courses.id, "85")
        result = funded.add_transaction(PERIOD, courses.id, "5", description="other")
        assert result.alert is None

    def test_overspending_is_allowed_and_reported(self, funded: BudgetLedger, courses: Envelope) -> None:
        funded.allocate(PERIOD, courses.id, "100")
        result = funded.add_transaction(PERIOD, courses.id, "120")
        assert result.alert is not None
        assert result.alert.level == "over_budget"
        assert _spent(funded, courses) == Decimal("120.00")

    def test_spending_from_an_unfunded_envelope_is_over_budget(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "1")
        assert result.alert is not None
        assert result.alert.level == "over_budget"
        assert result.alert.percent_used is None

    @pytest.mark.parametrize("amount", ["0", "-3", "12,3,4"])
    def test_invalid_amounts_are_rejected_before_any_write(
        self, funded: BudgetLedger, courses: Envelope, amount: str
    ) -> None:
        with pytest.raises(LedgerValidationError):
            funded.add_transaction(PERIOD, courses.id, amount)
        assert funded.list_transactions(PERIOD) == []

    def test_unknown_envelope_is_rejected(self, funded: BudgetLedger) -> None:
        with pytest.raises(NotFoundError):
            funded.add_transaction(PERIOD, "missing", "10")
        assert funded.list_transactions(PERIOD) == []

    def test_possible_duplicate_is_advisory(self, funded: BudgetLedger, courses: Envelope) -> None:
        first = funded.add_transaction(PERIOD, courses.id, "9.99")
        second = funded.add_transaction(PERIOD, courses.id, "9,99")
        assert first.possible_duplicate is None
        assert second.possible_duplicate is not None
        assert second.possible_duplicate.existing_transaction_id == first.transaction.id
        assert _spent(funded, courses) == Decimal("19.98")

    def test_same_amount_on_another_envelope_is_not_a_duplicate(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        funded.add_transaction(PERIOD, courses.id, "5")
        result = funded.add_transaction(PERIOD, loisirs.id, "5")
        assert result.possible_duplicate is None

    def test_idempotency_key_replays_the_original(self, funded: BudgetLedger, courses: Envelope) -> None:
        first = funded.add_transaction(PERIOD, courses.id, "20", idempotency_key="scan-42")
        replay = funded.add_transaction(PERIOD, courses.id, "20", idempotency_key="scan-42")
        assert replay.replayed is True
        assert replay.transaction.id == first.transaction.id
        assert _spent(funded, courses) == Decimal("20.00")
        assert len(funded.list_transactions(PERIOD)) == 1

    def test_records_are_stamped_with_scope(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "3")
        assert result.transaction.user_id == "user-1"
        assert result.transaction.household_id == "house-1"

    def test_default_date_falls_inside_the_period(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "3")
        assert (result.transaction.date.year, result.transaction.date.month) == (2026, 3)


# ---------------------------------------------------------------------------
# TestUpdateTransaction
# ---------------------------------------------------------------------------


class TestUpdateTransaction:
    def test_amount_change_adjusts_spent_by_the_difference(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "40")
        funded.update_transaction(result.transaction.id, amount="55.50")
        assert _spent(funded, courses) == Decimal("55.50")

    def test_same_patch_twice_is_idempotent(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "40")
        funded.update_transaction(result.transaction.id, amount="25")
        funded.update_transaction(result.transaction.id, amount="25")
        assert _spent(funded, courses) == Decimal("25.00")

    def test_moving_to_another_envelope_reverses_then_applies(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "40")
        funded.update_transaction(result.transaction.id, envelope_id=loisirs.id, amount="42")
        assert _spent(funded, courses) == Decimal("0.00")
        assert _spent(funded, loisirs) == Decimal("42.00")

    def test_failed_move_leaves_spent_untouched(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "40")
        with pytest.raises(NotFoundError):
            funded.update_transaction(result.transaction.id, envelope_id="missing")
        assert _spent(funded, courses) == Decimal("40.00")

    def test_descriptive_fields_are_patched(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "40", merchant="Lidl")
        updated = funded.update_transaction(result.transaction.id, merchant="Aldi", notes="receipt lost")
        assert updated.transaction.merchant == "Aldi"
        assert updated.transaction.notes == "receipt lost"
        assert _spent(funded, courses) == Decimal("40.00")

    def test_split_amount_cannot_change_here(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        split = funded.add_split_transaction(PERIOD, "50", [(courses.id, "30"), (loisirs.id, "20")])
        with pytest.raises(LedgerValidationError):
            funded.update_transaction(split.transaction.id, amount="60")
        assert _spent(funded, courses) == Decimal("30.00")

    def test_split_primary_can_only_move_to_one_of_its_legs(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        vacances = funded.create_envelope(PERIOD, "Vacances", category="savings")
        split = funded.add_split_transaction(PERIOD, "50", [(courses.id, "30"), (loisirs.id, "20")])
        with pytest.raises(LedgerValidationError):
            funded.update_transaction(split.transaction.id, envelope_id=vacances.id)

        relabelled = funded.update_transaction(split.transaction.id, envelope_id=loisirs.id)
        assert relabelled.transaction.envelope_id == loisirs.id
        assert _spent(funded, loisirs) == Decimal("20.00")
        assert _spent(funded, vacances) == Decimal("0.00")


# ---------------------------------------------------------------------------
# TestDeleteTransaction
# ---------------------------------------------------------------------------


class TestDeleteTransaction:
    def test_delete_reverses_spent(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "40")
        funded.delete_transaction(result.transaction.id)
        assert _spent(funded, courses) == Decimal("0.00")
        with pytest.raises(NotFoundError):
            funded.get_transaction(result.transaction.id)

    def test_delete_split_reverses_every_leg(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        split = funded.add_split_transaction(PERIOD, "50", [(courses.id, "30"), (loisirs.id, "20")])
        funded.delete_transaction(split.transaction.id)
        assert _spent(funded, courses) == Decimal("0.00")
        assert _spent(funded, loisirs) == Decimal("0.00")
        assert funded.storage.list_period_splits(PERIOD) == []

    def test_attach_receipt_leaves_spent_alone(self, funded: BudgetLedger, courses: Envelope) -> None:
        result = funded.add_transaction(PERIOD, courses.id, "40")
        updated = funded.attach_receipt(result.transaction.id, "receipts/abc.jpg")
        assert updated.receipt_url == "receipts/abc.jpg"
        assert _spent(funded, courses) == Decimal("40.00")


# ---------------------------------------------------------------------------
# TestTransactionQueries
# ---------------------------------------------------------------------------


class TestTransactionQueries:
    def test_filter_by_envelope_merchant_and_amount(
        self, funded: BudgetLedger, courses: Envelope, loisirs: Envelope
    ) -> None:
        funded.add_transaction(PERIOD, courses.id, "10", merchant="Carrefour Market", date=date(2026, 3, 2))
        funded.add_transaction(PERIOD, courses.id, "80", merchant="Lidl", date=date(2026, 3, 10))
        funded.add_transaction(PERIOD, loisirs.id, "25", merchant="Cinema", date=date(2026, 3, 12))

        by_envelope = funded.list_transactions(PERIOD, TransactionFilter(envelope_id=courses.id))
        assert [transaction.amount for transaction in by_envelope] == [Decimal("10.00"), Decimal("80.00")]

        by_merchant = funded.list_transactions(PERIOD, TransactionFilter(merchant="carrefour"))
        assert len(by_merchant) == 1

        by_amount = funded.list_transactions(PERIOD, TransactionFilter(min_amount="20", max_amount="50"))
        assert [transaction.merchant for transaction in by_amount] == ["Cinema"]

        by_date = funded.list_transactions(PERIOD, TransactionFilter(since=date(2026, 3, 5), until=date(2026, 3, 10)))
        assert [transaction.merchant for transaction in by_date] == ["Lidl"]


# ---------------------------------------------------------------------------
# TestPureHelpers
# ---------------------------------------------------------------------------


class TestPureHelpers:
    def test_warning_requires_crossing_the_threshold(self, courses: Envelope) -> None:
        envelope = courses.model_copy(update={"allocated": Decimal("100.00"), "spent": Decimal("80.00")})
        alert = evaluate_spending_alert(envelope, spent_before=Decimal("79.99"))
        assert alert is not None and alert.level == "warning"
        assert evaluate_spending_alert(envelope, spent_before=Decimal("80.00")) is None

    def test_duplicate_window(self, courses: Envelope) -> None:
        existing = Transaction(
            id="t-1",
            period_key=PERIOD,
            envelope_id=courses.id,
            amount=Decimal("9.99"),
            date=date(2026, 3, 1),
        )
        inside = existing.created_at + timedelta(seconds=299)
        outside = existing.created_at + timedelta(seconds=301)
        assert find_possible_duplicate([existing], courses.id, Decimal("9.99"), inside, 300) is not None
        assert find_possible_duplicate([existing], courses.id, Decimal("9.99"), outside, 300) is None
        assert find_possible_duplicate([existing], courses.id, Decimal("9.98"), inside, 300) is None
