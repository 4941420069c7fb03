# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Split expenses: one transaction whose amount is distributed over several
envelopes.

The spent effect of a split expense lives entirely in its Split rows. The
parent transaction's ``envelope_id`` only names the primary leg, so turning
an ordinary expense into a split first reverses the primary envelope's
full-amount credit and then credits every leg, all in one unit of work.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Optional, Union
from uuid import uuid4

from pydantic import BaseModel

from envelope_ledger.alerts import SpendingAlert, evaluate_spending_alert
from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import ensure_period, period_str, require_envelope
from envelope_ledger.errors import InconsistentStateError, LedgerValidationError, NotFoundError, SplitMismatchError
from envelope_ledger.events import EventBus
from envelope_ledger.money import AmountInput, Money, percent_of, require_positive, total, within_tolerance
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.transaction import default_entry_date
from envelope_ledger.types import LedgerScope, PeriodKey, Split, SplitInput, Transaction, build_record

logger = logging.getLogger("envelope_ledger.ledger")

SplitLegInput = Union[SplitInput, dict, tuple]


class SplitShare(BaseModel, frozen=True):
    envelope_id: str
    amount: Money
    percent: Optional[Decimal] = None


class SplitResult(BaseModel, frozen=True):
    transaction: Transaction
    splits: list[Split]
    alerts: list[SpendingAlert] = []


# ─── Pure helpers ─────────────────────────────────────────────────────────────


def coerce_legs(legs: Sequence[SplitLegInput]) -> list[SplitInput]:
    """Accept SplitInput models, ``{"envelope_id", "amount"}`` dicts or ``(envelope_id, amount)`` pairs."""
    coerced: list[SplitInput] = []
    for leg in legs:
        if isinstance(leg, SplitInput):
            coerced.append(leg)
        elif isinstance(leg, dict):
            coerced.append(build_record(SplitInput, **leg))
        elif isinstance(leg, tuple) and len(leg) == 2:
            coerced.append(build_record(SplitInput, envelope_id=leg[0], amount=leg[1]))
        else:
            raise LedgerValidationError(f"Unsupported split leg {leg!r}.", field="splits")
    return coerced


def validate_split(total_amount: Decimal, legs: list[SplitInput], tolerance: Decimal) -> None:
    """
    Check a split set before any envelope is touched.

    Requires at least two legs, each on a distinct envelope, whose amounts
    sum to ``total_amount`` within ``tolerance``.
    """
    if len(legs) < 2:
        raise LedgerValidationError("A split needs at least two legs.", field="splits")
    envelope_ids = [leg.envelope_id for leg in legs]
    if len(set(envelope_ids)) != len(envelope_ids):
        raise LedgerValidationError("Each split leg must use a different envelope.", field="splits")
    actual = total(leg.amount for leg in legs)
    if not within_tolerance(actual, total_amount, tolerance):
        raise SplitMismatchError(total_amount, actual)


def split_shares(splits: Sequence[Split | SplitInput], parent_amount: Decimal) -> list[SplitShare]:
    """Per-leg percentage of the parent amount. A derived view, never stored."""
    return [
        SplitShare(
            envelope_id=split.envelope_id,
            amount=split.amount,
            percent=percent_of(split.amount, parent_amount),
        )
        for split in splits
    ]


# ─── Split allocator ──────────────────────────────────────────────────────────


class SplitAllocator:
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

    def splits_for(self, transaction_id: str) -> list[Split]:
        self._require_transaction(transaction_id)
        return self._storage.list_splits(transaction_id)

    def split_percentages(self, transaction_id: str) -> list[SplitShare]:
        transaction = self._require_transaction(transaction_id)
        return split_shares(self._storage.list_splits(transaction_id), transaction.amount)

    def create_split(
        self,
        transaction_id: str,
        total_amount: AmountInput,
        splits: Sequence[SplitLegInput],
    ) -> SplitResult:
        """
        Distribute an existing expense over several envelopes.

        ``total_amount`` and the leg sum must both match the expense amount.
        The primary envelope's original credit is reversed and each leg
        credited individually, so the aggregate spent delta equals the expense
        amount exactly once. When the original envelope is not among the legs,
        the first leg becomes primary.
        """
        total_value = require_positive(total_amount, "total_amount")
        legs = coerce_legs(splits)
        validate_split(total_value, legs, self._config.split_tolerance)

        with self._storage.unit_of_work():
            parent = self._require_transaction(transaction_id)
            if parent.is_split:
                raise InconsistentStateError(
                    f"Transaction {transaction_id!r} is already split; use update_split."
                )
            if not within_tolerance(total_value, parent.amount, self._config.split_tolerance):
                raise SplitMismatchError(
                    parent.amount,
                    total_value,
                    f"Split total {total_value} does not match the expense amount {parent.amount}.",
                )
            # The legs themselves must sum to the stored expense, not just to the caller's total.
            validate_split(parent.amount, legs, self._config.split_tolerance)
            key = parent.period_key
            before = self._spent_before(key, legs)
            if parent.envelope_id in before:
                before[parent.envelope_id] -= parent.amount

            primary = parent.envelope_id
            if primary not in {leg.envelope_id for leg in legs}:
                primary = legs[0].envelope_id
            self._storage.adjust_envelope(key, parent.envelope_id, spent_delta=-parent.amount)
            updated = parent.model_copy(update={"is_split": True, "envelope_id": primary})
            rows = self._apply_legs(updated, legs)
            self._storage.save_transaction(updated)
            alerts = self._alerts(key, legs, before)

        logger.info(
            "split_created",
            extra={"period_key": key, "transaction_id": transaction_id, "legs": len(rows)},
        )
        self._events.emit("split_changed", key, transaction_id)
        return SplitResult(transaction=updated, splits=rows, alerts=alerts)

    def update_split(
        self,
        transaction_id: str,
        new_total_amount: AmountInput,
        new_splits: Sequence[SplitLegInput],
    ) -> SplitResult:
        """
        Replace the legs of a split expense, possibly with a new total.

        The new set is validated before any reversal. Every old leg is then
        reversed and every new leg applied in one unit of work. When the
        primary envelope is not among the new legs, the first new leg becomes
        primary.
        """
        total_value = require_positive(new_total_amount, "new_total_amount")
        legs = coerce_legs(new_splits)
        validate_split(total_value, legs, self._config.split_tolerance)

        with self._storage.unit_of_work():
            parent = self._require_transaction(transaction_id)
            if not parent.is_split:
                raise InconsistentStateError(
                    f"Transaction {transaction_id!r} is not split; use create_split."
                )
            key = parent.period_key
            for leg in legs:
                require_envelope(self._storage, key, leg.envelope_id)
            before = self._spent_before(key, legs)
            old_legs = self._storage.list_splits(transaction_id)
            # Reversals of legs that are re-applied must not count toward the "before" figure.
            for split in old_legs:
                if split.envelope_id in before:
                    before[split.envelope_id] -= split.amount
                self._storage.adjust_envelope(key, split.envelope_id, spent_delta=-split.amount)

            primary = parent.envelope_id
            if primary not in {leg.envelope_id for leg in legs}:
                primary = legs[0].envelope_id
            updated = parent.model_copy(update={"amount": total_value, "envelope_id": primary})
            rows = self._apply_legs(updated, legs)
            self._storage.save_transaction(updated)
            alerts = self._alerts(key, legs, before)

        logger.info(
            "split_updated",
            extra={
                "period_key": key,
                "transaction_id": transaction_id,
                "legs": len(rows),
                "amount": str(total_value),
            },
        )
        self._events.emit("split_changed", key, transaction_id)
        return SplitResult(transaction=updated, splits=rows, alerts=alerts)

    def add_split_transaction(
        self,
        period: PeriodKey | str,
        amount: AmountInput,
        splits: Sequence[SplitLegInput],
        description: str = "",
        merchant: str | None = None,
        date: date | None = None,
        notes: str | None = None,
        primary_envelope_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> SplitResult:
        """
        Record a new expense already split over several envelopes.

        Equivalent to adding the expense and splitting it, committed as one
        step: only the legs are ever credited.
        """
        value = require_positive(amount)
        legs = coerce_legs(splits)
        validate_split(value, legs, self._config.split_tolerance)
        key = period_str(period)
        primary = primary_envelope_id or legs[0].envelope_id
        if primary not in {leg.envelope_id for leg in legs}:
            raise LedgerValidationError("The primary envelope must be one of the legs.", field="primary_envelope_id")

        with self._storage.unit_of_work():
            if idempotency_key is not None:
                replayed_id = self._storage.get_operation(idempotency_key)
                if replayed_id is not None:
                    return SplitResult(
                        transaction=self._require_transaction(replayed_id),
                        splits=self._storage.list_splits(replayed_id),
                    )

            ensure_period(self._storage, self._scope, key)
            for leg in legs:
                require_envelope(self._storage, key, leg.envelope_id)
            before = self._spent_before(key, legs)
            parent = build_record(
                Transaction,
                id=str(uuid4()),
                period_key=key,
                envelope_id=primary,
                amount=value,
                description=description.strip(),
                merchant=merchant,
                date=date or default_entry_date(key),
                notes=notes,
                is_split=True,
                user_id=self._scope.user_id,
                household_id=self._scope.household_id,
            )
            self._storage.save_transaction(parent)
            rows = self._apply_legs(parent, legs)
            if idempotency_key is not None:
                self._storage.record_operation(idempotency_key, parent.id)
            alerts = self._alerts(key, legs, before)

        logger.info(
            "split_transaction_added",
            extra={"period_key": key, "transaction_id": parent.id, "amount": str(value), "legs": len(rows)},
        )
        self._events.emit("transaction_added", key, parent.id)
        return SplitResult(transaction=parent, splits=rows, alerts=alerts)

    # ─── Private helpers ──────────────────────────────────────────────────────

    def _require_transaction(self, transaction_id: str) -> Transaction:
        transaction = self._storage.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    def _spent_before(self, period_key: str, legs: list[SplitInput]) -> dict[str, Decimal]:
        return {
            leg.envelope_id: require_envelope(self._storage, period_key, leg.envelope_id).spent
            for leg in legs
        }

    def _apply_legs(self, parent: Transaction, legs: list[SplitInput]) -> list[Split]:
        rows = [
            Split(
                id=str(uuid4()),
                parent_transaction_id=parent.id,
                period_key=parent.period_key,
                envelope_id=leg.envelope_id,
                amount=leg.amount,
            )
            for leg in legs
        ]
        for row in rows:
            self._storage.adjust_envelope(parent.period_key, row.envelope_id, spent_delta=row.amount)
        self._storage.replace_splits(parent.id, rows)
        return rows

    def _alerts(self, period_key: str, legs: list[SplitInput], before: dict[str, Decimal]) -> list[SpendingAlert]:
        alerts: list[SpendingAlert] = []
        for leg in legs:
            envelope = require_envelope(self._storage, period_key, leg.envelope_id)
            alert = evaluate_spending_alert(
                envelope, before[leg.envelope_id], self._config.warning_threshold_percent
            )
            if alert is not None:
                alerts.append(alert)
        return alerts
