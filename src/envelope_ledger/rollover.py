# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Month-to-month rollover.

For every envelope with ``rollover`` enabled in the source period, the
unspent balance is reduced by the envelope's strategy, optionally clamped by
an active savings goal, and seeded into the target period. The whole
copy-set commits in one unit of work together with its history entries, so
no history entry exists for a run that failed partway.

The carried total enters the target period as an Income with source
``"rollover"``. Allocations in the target grow by exactly the same total, so
"to be budgeted" stays ``Σincome − Σallocated`` without any special case.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel

from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import ensure_period, period_str
from envelope_ledger.errors import LedgerValidationError, LimitExceededError
from envelope_ledger.events import EventBus
from envelope_ledger.goals import is_rollover_cap_active
from envelope_ledger.money import ZERO, Money, exceeds, quantize, to_cents, total
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.types import (
    Envelope,
    Income,
    LedgerScope,
    PeriodKey,
    RolloverHistoryEntry,
    RolloverStrategy,
    SavingsGoal,
)

logger = logging.getLogger("envelope_ledger.rollover")

_HUNDRED = Decimal("100")


class CarryOver(BaseModel, frozen=True):
    envelope_id: str
    envelope_name: str
    strategy: RolloverStrategy
    net_balance: Money
    amount: Money
    is_capped: bool = False


class OverdraftSignal(BaseModel, frozen=True):
    """An envelope that ended the source period overspent. Nothing is carried for it."""

    envelope_id: str
    envelope_name: str
    overdraft_amount: Money


class RolloverReport(BaseModel, frozen=True):
    source_month_key: str
    target_month_key: str
    carried: list[CarryOver]
    # Envelope ids already rolled over for this source/target pair.
    skipped: list[str]
    overdrafts: list[OverdraftSignal]
    total_carried: Money
    history: list[RolloverHistoryEntry]
    income_id: Optional[str] = None


def compute_carry_over(envelope: Envelope, goal: SavingsGoal | None = None) -> CarryOver | None:
    """
    Amount an envelope carries into the next period.

    Returns None for envelopes excluded from the copy: rollover disabled,
    or strategy ``none``. ``is_capped`` is set only when a cap actually
    reduced the amount.
    """
    if not envelope.rollover or envelope.rollover_strategy == "none":
        return None

    net_balance = max(ZERO, envelope.allocated - envelope.spent)
    is_capped = False

    if envelope.rollover_strategy == "full":
        amount = net_balance
    elif envelope.rollover_strategy == "percentage":
        amount = net_balance * Decimal(envelope.rollover_percentage or 0) / _HUNDRED
    else:
        cap = envelope.max_rollover_amount if envelope.max_rollover_amount is not None else ZERO
        amount = min(net_balance, cap)
        is_capped = exceeds(net_balance, cap)

    if is_rollover_cap_active(goal) and exceeds(amount, goal.target_amount):  # type: ignore[union-attr]
        amount = goal.target_amount  # type: ignore[union-attr]
        is_capped = True

    return CarryOver(
        envelope_id=envelope.id,
        envelope_name=envelope.name,
        strategy=envelope.rollover_strategy,
        net_balance=net_balance,
        amount=quantize(amount),
        is_capped=is_capped,
    )


def detect_overdraft(envelope: Envelope) -> OverdraftSignal | None:
    if not exceeds(envelope.spent, envelope.allocated):
        return None
    return OverdraftSignal(
        envelope_id=envelope.id,
        envelope_name=envelope.name,
        overdraft_amount=envelope.spent - envelope.allocated,
    )


class RolloverEngine:
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

    def advance_month(self, source: PeriodKey | str) -> RolloverReport:
        """Roll the source period over into the month that follows it."""
        return self.copy_envelopes_to_month(source, PeriodKey.coerce(source).next())

    def copy_envelopes_to_month(self, source: PeriodKey | str, target: PeriodKey | str) -> RolloverReport:
        """
        Seed ``target`` with the rollover envelopes of ``source``.

        An envelope missing from the target is created with the same id and
        configuration, ``allocated`` set to its carry-over and ``spent`` zero.
        An envelope already present has its allocation increased by the
        carry-over. Envelopes already rolled over for this pair are skipped,
        so repeating a run is harmless.
        """
        source_key = period_str(source)
        target_key = period_str(target)
        if source_key == target_key:
            raise LedgerValidationError("Source and target periods must differ.", field="target")

        carried: list[CarryOver] = []
        skipped: list[str] = []
        overdrafts: list[OverdraftSignal] = []
        history: list[RolloverHistoryEntry] = []
        income_id: str | None = None

        with self._storage.unit_of_work():
            ensure_period(self._storage, self._scope, target_key)
            already_rolled = {
                entry.envelope_id
                for entry in self._storage.list_rollover_history()
                if entry.source_month_key == source_key and entry.target_month_key == target_key
            }
            target_envelopes = {envelope.id: envelope for envelope in self._storage.list_envelopes(target_key)}
            next_position = max((envelope.position for envelope in target_envelopes.values()), default=-1) + 1

            for envelope in self._storage.list_envelopes(source_key):
                overdraft = detect_overdraft(envelope)
                if overdraft is not None:
                    overdrafts.append(overdraft)

                carry = compute_carry_over(envelope, self._storage.get_goal_by_envelope(envelope.id))
                if carry is None:
                    continue
                if envelope.id in already_rolled:
                    skipped.append(envelope.id)
                    continue

                if envelope.id in target_envelopes:
                    if to_cents(carry.amount) > 0:
                        self._storage.adjust_envelope(target_key, envelope.id, allocated_delta=carry.amount)
                else:
                    if len(target_envelopes) >= self._config.max_envelopes_per_period:
                        raise LimitExceededError("envelopes per period", self._config.max_envelopes_per_period)
                    seeded = envelope.model_copy(
                        update={
                            "period_key": target_key,
                            "allocated": carry.amount,
                            "spent": ZERO,
                            "position": next_position,
                        }
                    )
                    self._storage.save_envelope(seeded)
                    target_envelopes[seeded.id] = seeded
                    next_position += 1

                entry = RolloverHistoryEntry(
                    id=str(uuid4()),
                    envelope_id=envelope.id,
                    envelope_name=envelope.name,
                    source_month_key=source_key,
                    target_month_key=target_key,
                    amount=carry.amount,
                    strategy=carry.strategy,
                    is_capped=carry.is_capped,
                    user_id=self._scope.user_id,
                    household_id=self._scope.household_id,
                )
                self._storage.append_rollover_history(entry)
                history.append(entry)
                carried.append(carry)

            total_carried = total(carry.amount for carry in carried)
            if to_cents(total_carried) > 0:
                target_period = PeriodKey.parse(target_key)
                income = Income(
                    id=str(uuid4()),
                    period_key=target_key,
                    amount=total_carried,
                    description=f"Rollover from {source_key}",
                    date=date(target_period.year, target_period.month, 1),
                    source="rollover",
                    user_id=self._scope.user_id,
                    household_id=self._scope.household_id,
                )
                self._storage.save_income(income)
                income_id = income.id

        for overdraft in overdrafts:
            logger.warning(
                "envelope_overdrawn",
                extra={
                    "period_key": source_key,
                    "envelope_id": overdraft.envelope_id,
                    "overdraft_amount": str(overdraft.overdraft_amount),
                },
            )
        logger.info(
            "month_rolled_over",
            extra={
                "source_month_key": source_key,
                "target_month_key": target_key,
                "envelopes": len(carried),
                "skipped": len(skipped),
                "total_carried": str(total_carried),
            },
        )
        self._events.emit("month_rolled_over", target_key)
        return RolloverReport(
            source_month_key=source_key,
            target_month_key=target_key,
            carried=carried,
            skipped=skipped,
            overdrafts=overdrafts,
            total_carried=total_carried,
            history=history,
            income_id=income_id,
        )

    def history(self, envelope_id: str | None = None) -> list[RolloverHistoryEntry]:
        entries = self._storage.list_rollover_history()
        if envelope_id is not None:
            entries = [entry for entry in entries if entry.envelope_id == envelope_id]
        return entries
