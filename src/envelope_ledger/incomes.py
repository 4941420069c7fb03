# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel

from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import (
    available_balance,
    compute_to_be_budgeted,
    ensure_period,
    period_str,
    require_envelope,
)
from envelope_ledger.errors import InsufficientFundsError, LedgerValidationError, NotFoundError
from envelope_ledger.events import EventBus
from envelope_ledger.money import ZERO, AmountInput, Money, exceeds, require_positive, to_cents, total
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.transaction import default_entry_date
from envelope_ledger.types import Envelope, Income, LedgerScope, PeriodKey, build_record

logger = logging.getLogger("envelope_ledger.ledger")


class DeficitStep(BaseModel, frozen=True):
    envelope_id: str
    envelope_name: str
    available: Money
    amount: Money


class DeficitPlan(BaseModel, frozen=True):
    """Suggested deallocations that bring "to be budgeted" back to zero."""

    period_key: str
    deficit: Money
    steps: list[DeficitStep]
    total_covered: Money
    uncovered: Money
    can_fully_cover: bool


class IncomeChangeResult(BaseModel, frozen=True):
    income: Income
    to_be_budgeted: Money
    # Always >= 0; the amount "to be budgeted" is below zero.
    deficit: Money
    plan: Optional[DeficitPlan] = None


def plan_deficit_coverage(period_key: str, envelopes: Iterable[Envelope], deficit: Decimal) -> DeficitPlan:
    """
    Greedy deallocation plan: envelopes with unspent allocation, largest
    available first, each giving ``min(available, remaining deficit)``.
    """
    remaining = max(ZERO, deficit)
    steps: list[DeficitStep] = []
    candidates = sorted(
        (envelope for envelope in envelopes if to_cents(available_balance(envelope)) > 0),
        key=lambda envelope: (-to_cents(available_balance(envelope)), envelope.position),
    )
    for envelope in candidates:
        if to_cents(remaining) <= 0:
            break
        available = available_balance(envelope)
        amount = min(available, remaining)
        steps.append(
            DeficitStep(
                envelope_id=envelope.id,
                envelope_name=envelope.name,
                available=available,
                amount=amount,
            )
        )
        remaining -= amount

    covered = total(step.amount for step in steps)
    return DeficitPlan(
        period_key=period_key,
        deficit=max(ZERO, deficit),
        steps=steps,
        total_covered=covered,
        uncovered=max(ZERO, remaining),
        can_fully_cover=to_cents(remaining) <= 0,
    )


class IncomeLedger:
    """
    Incomes of each period.

    Removing or reducing income never blocks, even when it drives "to be
    budgeted" negative; the result then carries a deficit plan the caller
    can review and apply.
    """

    def __init__(
        self,
        storage: LedgerStorage,
        config: LedgerConfig,
        scope: LedgerScope,
        events: EventBus,
    ) -> None:
        self._storage = storage
        self._config = config
        self._scope = scope
        self._events = events

    def list_incomes(self, period: PeriodKey | str) -> list[Income]:
        incomes = self._storage.list_incomes(period_str(period))
        return sorted(incomes, key=lambda income: (income.date, income.created_at))

    def add(
        self,
        period: PeriodKey | str,
        amount: AmountInput,
        description: str = "",
        date: date | None = None,
    ) -> IncomeChangeResult:
        value = require_positive(amount)
        key = period_str(period)
        with self._storage.unit_of_work():
            ensure_period(self._storage, self._scope, key)
            income = build_record(
                Income,
                id=str(uuid4()),
                period_key=key,
                amount=value,
                description=description.strip(),
                date=date or default_entry_date(key),
                user_id=self._scope.user_id,
                household_id=self._scope.household_id,
            )
            self._storage.save_income(income)
            result = self._result(key, income)

        logger.info("income_added", extra={"period_key": key, "income_id": income.id, "amount": str(value)})
        self._events.emit("income_added", key, income.id)
        return result

    def update(
        self,
        period: PeriodKey | str,
        income_id: str,
        amount: AmountInput | None = None,
        description: str | None = None,
        date: date | None = None,
    ) -> IncomeChangeResult:
        key = period_str(period)
        changes: dict[str, object] = {}
        if amount is not None:
            changes["amount"] = require_positive(amount)
        if description is not None:
            changes["description"] = description.strip()
        if date is not None:
            changes["date"] = date

        with self._storage.unit_of_work():
            current = self._require(key, income_id)
            updated = build_record(Income, **{**current.model_dump(), **changes})
            self._storage.save_income(updated)
            result = self._result(key, updated)

        logger.info(
            "income_updated",
            extra={"period_key": key, "income_id": income_id, "amount": str(updated.amount)},
        )
        self._events.emit("income_updated", key, income_id)
        return result

    def delete(self, period: PeriodKey | str, income_id: str) -> IncomeChangeResult:
        key = period_str(period)
        with self._storage.unit_of_work():
            income = self._require(key, income_id)
            self._storage.delete_income(income_id)
            result = self._result(key, income)

        logger.info(
            "income_deleted",
            extra={"period_key": key, "income_id": income_id, "amount": str(income.amount)},
        )
        if result.plan is not None:
            logger.warning(
                "budget_deficit",
                extra={"period_key": key, "deficit": str(result.deficit)},
            )
        self._events.emit("income_deleted", key, income_id)
        return result

    def preview_deletion(self, period: PeriodKey | str, income_id: str) -> IncomeChangeResult:
        """What ``delete`` would report, without deleting anything."""
        key = period_str(period)
        with self._storage.unit_of_work():
            income = self._require(key, income_id)
            incomes = [other for other in self._storage.list_incomes(key) if other.id != income_id]
            envelopes = self._storage.list_envelopes(key)
        return self._build_result(key, income, incomes, envelopes)

    def apply_deficit_plan(self, period: PeriodKey | str, plan: DeficitPlan) -> list[Envelope]:
        """
        Deallocate every step of ``plan`` in one unit of work.

        Each step is re-checked against the envelope as it is now; if any step
        no longer fits, nothing is applied.
        """
        key = period_str(period)
        if plan.period_key != key:
            raise LedgerValidationError(
                f"Plan was computed for {plan.period_key}, not {key}.", field="plan"
            )
        updated: list[Envelope] = []
        with self._storage.unit_of_work():
            for step in plan.steps:
                envelope = require_envelope(self._storage, key, step.envelope_id)
                available = available_balance(envelope)
                if exceeds(step.amount, available):
                    raise InsufficientFundsError(step.amount, available, envelope.name, self._config.currency_symbol)
                updated.append(self._storage.adjust_envelope(key, step.envelope_id, allocated_delta=-step.amount))

        logger.info(
            "deficit_plan_applied",
            extra={"period_key": key, "steps": len(plan.steps), "total_covered": str(plan.total_covered)},
        )
        for envelope in updated:
            self._events.emit("allocation_changed", key, envelope.id)
        return updated

    # ─── Private helpers ──────────────────────────────────────────────────────

    def _require(self, period_key: str, income_id: str) -> Income:
        income = self._storage.get_income(income_id)
        if income is None or income.period_key != period_key:
            raise NotFoundError("income", income_id, period_key)
        return income

    def _result(self, period_key: str, income: Income) -> IncomeChangeResult:
        return self._build_result(
            period_key,
            income,
            self._storage.list_incomes(period_key),
            self._storage.list_envelopes(period_key),
        )

    @staticmethod
    def _build_result(
        period_key: str,
        income: Income,
        incomes: list[Income],
        envelopes: list[Envelope],
    ) -> IncomeChangeResult:
        to_be_budgeted = compute_to_be_budgeted(incomes, envelopes)
        deficit = max(ZERO, -to_be_budgeted)
        plan = plan_deficit_coverage(period_key, envelopes, deficit) if to_cents(deficit) > 0 else None
        return IncomeChangeResult(income=income, to_be_budgeted=to_be_budgeted, deficit=deficit, plan=plan)
