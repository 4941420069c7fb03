# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal
from typing import Any
from uuid import uuid4

from envelope_ledger.config import LedgerConfig
from envelope_ledger.errors import (
    InconsistentStateError,
    InsufficientFundsError,
    LedgerValidationError,
    LimitExceededError,
    NotFoundError,
)
from envelope_ledger.events import EventBus
from envelope_ledger.money import ZERO, AmountInput, exceeds, parse_amount, percent_of, require_positive, to_cents, total
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.types import (
    Envelope,
    EnvelopeCategory,
    EnvelopeColor,
    EnvelopeIcon,
    Income,
    LedgerScope,
    MonthlyPeriod,
    PeriodKey,
    RolloverStrategy,
    build_record,
)

logger = logging.getLogger("envelope_ledger.ledger")

_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "icon",
        "color",
        "category",
        "rollover",
        "rollover_strategy",
        "rollover_percentage",
        "max_rollover_amount",
    }
)


# ─── Pure helpers ─────────────────────────────────────────────────────────────


def period_str(period: PeriodKey | str) -> str:
    """Normalise a period argument to its canonical ``YYYY-MM`` form."""
    try:
        return str(PeriodKey.coerce(period))
    except ValueError as exc:
        raise LedgerValidationError(str(exc), field="period") from exc


def available_balance(envelope: Envelope) -> Decimal:
    """Unspent allocation that may be deallocated or transferred. Never negative."""
    return max(ZERO, envelope.allocated - envelope.spent)


def utilization_percent(envelope: Envelope) -> Decimal | None:
    """``spent / allocated`` as a percentage, or None for an unfunded envelope."""
    return percent_of(envelope.spent, envelope.allocated)


def compute_to_be_budgeted(incomes: Iterable[Income], envelopes: Iterable[Envelope]) -> Decimal:
    """
    Income not yet assigned to any envelope.

    Always recomputed from the stored rows, never persisted, so it cannot
    drift from the incomes and allocations it summarises.
    """
    return total(income.amount for income in incomes) - total(
        envelope.allocated for envelope in envelopes
    )


def ensure_period(storage: LedgerStorage, scope: LedgerScope, period_key: str) -> tuple[MonthlyPeriod, bool]:
    """Return the period row, creating it on first reference. The flag tells whether it was created."""
    with storage.unit_of_work():
        existing = storage.get_period(period_key)
        if existing is not None:
            return existing, False
        period = MonthlyPeriod(key=period_key, user_id=scope.user_id, household_id=scope.household_id)
        storage.save_period(period)
        return period, True


def require_envelope(storage: LedgerStorage, period_key: str, envelope_id: str) -> Envelope:
    envelope = storage.get_envelope(period_key, envelope_id)
    if envelope is None:
        raise NotFoundError("envelope", envelope_id, period_key)
    return envelope


# ─── Envelope store ───────────────────────────────────────────────────────────


class EnvelopeStore:
    """
    Envelopes of every monthly period, and the money assigned to them.

    Every mutation runs inside one storage unit of work. Bounds are checked
    against state read inside that unit of work, so a check made by a UI a
    moment earlier can never let a stale value through.
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

    # ─── Queries ──────────────────────────────────────────────────────────────

    def get(self, period: PeriodKey | str, envelope_id: str) -> Envelope:
        return require_envelope(self._storage, period_str(period), envelope_id)

    def list_envelopes(self, period: PeriodKey | str) -> list[Envelope]:
        return self._storage.list_envelopes(period_str(period))

    def to_be_budgeted(self, period: PeriodKey | str) -> Decimal:
        key = period_str(period)
        with self._storage.unit_of_work():
            return compute_to_be_budgeted(
                self._storage.list_incomes(key), self._storage.list_envelopes(key)
            )

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def create(
        self,
        period: PeriodKey | str,
        name: str,
        icon: EnvelopeIcon = "Wallet",
        color: EnvelopeColor = "blue",
        category: EnvelopeCategory = "lifestyle",
        rollover: bool = False,
        rollover_strategy: RolloverStrategy = "full",
        rollover_percentage: int | None = None,
        max_rollover_amount: AmountInput | None = None,
        envelope_id: str | None = None,
    ) -> Envelope:
        """
        Create an empty envelope (``allocated = spent = 0``) in a period.

        Raises LimitExceededError when the period already holds
        ``max_envelopes_per_period`` envelopes.
        """
        key = period_str(period)
        envelope = build_record(
            Envelope,
            id=envelope_id or str(uuid4()),
            period_key=key,
            name=name,
            icon=icon,
            color=color,
            category=category,
            rollover=rollover,
            rollover_strategy=rollover_strategy,
            rollover_percentage=rollover_percentage,
            max_rollover_amount=max_rollover_amount,
            user_id=self._scope.user_id,
            household_id=self._scope.household_id,
        )

        with self._storage.unit_of_work():
            ensure_period(self._storage, self._scope, key)
            existing = self._storage.list_envelopes(key)
            if len(existing) >= self._config.max_envelopes_per_period:
                raise LimitExceededError("envelopes per period", self._config.max_envelopes_per_period)
            if any(other.id == envelope.id for other in existing):
                raise InconsistentStateError(f"Envelope {envelope.id!r} already exists in {key}.")
            envelope = envelope.model_copy(
                update={"position": max((other.position for other in existing), default=-1) + 1}
            )
            self._storage.save_envelope(envelope)

        logger.info(
            "envelope_created",
            extra={"period_key": key, "envelope_id": envelope.id, "envelope_name": envelope.name},
        )
        self._events.emit("envelope_created", key, envelope.id)
        return envelope

    def update(self, period: PeriodKey | str, envelope_id: str, **changes: Any) -> Envelope:
        """
        Change descriptive or rollover fields of an envelope.

        Money fields are not accepted here; use allocate/deallocate/transfer.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise LedgerValidationError(
                f"Cannot update envelope field(s): {', '.join(sorted(unknown))}.",
                field=sorted(unknown)[0],
            )
        key = period_str(period)
        with self._storage.unit_of_work():
            current = require_envelope(self._storage, key, envelope_id)
            data = current.model_dump()
            data.update(changes)
            updated = build_record(Envelope, **data)
            self._storage.save_envelope(updated)

        self._events.emit("envelope_updated", key, envelope_id)
        return updated

    def reorder(self, period: PeriodKey | str, ordered_ids: list[str]) -> list[Envelope]:
        key = period_str(period)
        with self._storage.unit_of_work():
            envelopes = {envelope.id: envelope for envelope in self._storage.list_envelopes(key)}
            if set(ordered_ids) != set(envelopes) or len(ordered_ids) != len(envelopes):
                raise LedgerValidationError(
                    "ordered_ids must list every envelope of the period exactly once.",
                    field="ordered_ids",
                )
            for position, identifier in enumerate(ordered_ids):
                self._storage.save_envelope(
                    envelopes[identifier].model_copy(update={"position": position})
                )
            reordered = self._storage.list_envelopes(key)

        self._events.emit("envelopes_reordered", key)
        return reordered

    def delete(
        self,
        period: PeriodKey | str,
        envelope_id: str,
        reassign_to: str | None = None,
    ) -> None:
        """
        Irreversibly remove an envelope from a period.

        Its allocation returns to "to be budgeted" implicitly. Refused with
        InconsistentStateError while any split leg references the envelope,
        or while expenses reference it and no ``reassign_to`` envelope is
        given. With ``reassign_to``, those expenses move to that envelope
        together with their spent amount. When the envelope no longer exists
        in any period, its savings goal is deleted too.
        """
        key = period_str(period)
        with self._storage.unit_of_work():
            envelope = require_envelope(self._storage, key, envelope_id)

            split_refs = [split for split in self._storage.list_period_splits(key) if split.envelope_id == envelope_id]
            if split_refs:
                raise InconsistentStateError(
                    f"Envelope {envelope.name!r} is a leg of {len({s.parent_transaction_id for s in split_refs})} "
                    "split transaction(s); edit or delete those splits first."
                )

            direct = [
                transaction
                for transaction in self._storage.list_transactions(key)
                if transaction.envelope_id == envelope_id
            ]
            if direct and reassign_to is None:
                raise InconsistentStateError(
                    f"Envelope {envelope.name!r} still has {len(direct)} expense(s); "
                    "reassign them to another envelope first."
                )
            if direct:
                if reassign_to == envelope_id:
                    raise LedgerValidationError("reassign_to must be a different envelope.", field="reassign_to")
                require_envelope(self._storage, key, reassign_to)  # type: ignore[arg-type]
                moved = ZERO
                for transaction in direct:
                    self._storage.save_transaction(transaction.model_copy(update={"envelope_id": reassign_to}))
                    # A split parent only labels its primary leg; the legs own its spent.
                    if not transaction.is_split:
                        moved += transaction.amount
                self._storage.adjust_envelope(key, reassign_to, spent_delta=moved)  # type: ignore[arg-type]

            self._storage.delete_envelope(key, envelope_id)

            goal = self._storage.get_goal_by_envelope(envelope_id)
            if goal is not None and not self._storage.periods_with_envelope(envelope_id):
                self._storage.delete_goal(goal.id)

        logger.info(
            "envelope_deleted",
            extra={
                "period_key": key,
                "envelope_id": envelope_id,
                "released": str(envelope.allocated),
                "reassigned_to": reassign_to,
            },
        )
        self._events.emit("envelope_deleted", key, envelope_id)

    # ─── Money ────────────────────────────────────────────────────────────────

    def allocate(
        self,
        period: PeriodKey | str,
        envelope_id: str,
        amount: AmountInput,
        idempotency_key: str | None = None,
    ) -> Envelope:
        """
        Assign "to be budgeted" money to an envelope.

        Raises InsufficientFundsError when ``amount`` exceeds the period's
        "to be budgeted" balance, compared at cent precision.
        """
        value = require_positive(amount)
        key = period_str(period)

        with self._storage.unit_of_work():
            if idempotency_key is not None and self._storage.get_operation(idempotency_key) is not None:
                return require_envelope(self._storage, key, envelope_id)
            require_envelope(self._storage, key, envelope_id)
            available = compute_to_be_budgeted(
                self._storage.list_incomes(key), self._storage.list_envelopes(key)
            )
            if exceeds(value, available):
                raise InsufficientFundsError(value, available, "to be budgeted", self._config.currency_symbol)
            updated = self._storage.adjust_envelope(key, envelope_id, allocated_delta=value)
            if idempotency_key is not None:
                self._storage.record_operation(idempotency_key, envelope_id)

        logger.info(
            "envelope_allocated",
            extra={"period_key": key, "envelope_id": envelope_id, "amount": str(value)},
        )
        self._events.emit("allocation_changed", key, envelope_id)
        return updated

    def deallocate(self, period: PeriodKey | str, envelope_id: str, amount: AmountInput) -> Envelope:
        """
        Return unspent allocation to "to be budgeted".

        Money already spent cannot be deallocated: ``amount`` must not exceed
        ``allocated - spent``.
        """
        value = require_positive(amount)
        key = period_str(period)

        with self._storage.unit_of_work():
            envelope = require_envelope(self._storage, key, envelope_id)
            available = available_balance(envelope)
            if exceeds(value, available):
                raise InsufficientFundsError(value, available, envelope.name, self._config.currency_symbol)
            updated = self._storage.adjust_envelope(key, envelope_id, allocated_delta=-value)

        logger.info(
            "envelope_deallocated",
            extra={"period_key": key, "envelope_id": envelope_id, "amount": str(value)},
        )
        self._events.emit("allocation_changed", key, envelope_id)
        return updated

    def set_allocation(self, period: PeriodKey | str, envelope_id: str, new_total: AmountInput) -> Envelope:
        """
        Set an envelope's allocation to an absolute figure.

        Accepted range is ``[spent, allocated + to_be_budgeted]``. Equivalent
        to one allocate or deallocate of the difference.
        """
        target = parse_amount(new_total, "new_total")
        key = period_str(period)

        if target < ZERO:
            raise LedgerValidationError("new_total must not be negative.", field="new_total")

        with self._storage.unit_of_work():
            envelope = require_envelope(self._storage, key, envelope_id)
            delta = target - envelope.allocated
            if to_cents(delta) == 0:
                return envelope
            if delta > ZERO:
                available = compute_to_be_budgeted(
                    self._storage.list_incomes(key), self._storage.list_envelopes(key)
                )
                if exceeds(delta, available):
                    raise InsufficientFundsError(
                        delta, available, "to be budgeted", self._config.currency_symbol
                    )
            elif exceeds(envelope.spent, target):
                raise InsufficientFundsError(
                    -delta, available_balance(envelope), envelope.name, self._config.currency_symbol
                )
            updated = self._storage.adjust_envelope(key, envelope_id, allocated_delta=delta)

        logger.info(
            "envelope_allocation_set",
            extra={"period_key": key, "envelope_id": envelope_id, "amount": str(target)},
        )
        self._events.emit("allocation_changed", key, envelope_id)
        return updated
