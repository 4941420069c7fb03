# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel

from envelope_ledger.alerts import SpendingAlert, evaluate_spending_alert
from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import ensure_period, period_str, require_envelope
from envelope_ledger.errors import LedgerValidationError, NotFoundError
from envelope_ledger.events import EventBus
from envelope_ledger.money import AmountInput, Money, require_positive, to_cents
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.types import (
    LedgerScope,
    PeriodKey,
    Transaction,
    TransactionFilter,
    build_record,
    utcnow,
)

logger = logging.getLogger("envelope_ledger.ledger")


class PossibleDuplicate(BaseModel, frozen=True):
    """Advisory signal: an expense with the same envelope and amount was recorded moments ago."""

    existing_transaction_id: str
    envelope_id: str
    amount: Money
    seconds_apart: float


class TransactionResult(BaseModel, frozen=True):
    transaction: Transaction
    alert: Optional[SpendingAlert] = None
    possible_duplicate: Optional[PossibleDuplicate] = None
    # True when an idempotency key matched an already committed expense.
    replayed: bool = False


def default_entry_date(period_key: str, today: date | None = None) -> date:
    """Today when it falls inside the period, otherwise the first day of the period."""
    today = today or date.today()
    period = PeriodKey.parse(period_key)
    if period.contains(today):
        return today
    return date(period.year, period.month, 1)


def find_possible_duplicate(
    transactions: list[Transaction],
    envelope_id: str,
    amount: Decimal,
    created_at: datetime,
    window_seconds: int,
) -> PossibleDuplicate | None:
    """
    Return the most recent expense on the same envelope with the same amount
    created within ``window_seconds`` before ``created_at``, if any.
    """
    cents = to_cents(amount)
    candidates = [
        transaction
        for transaction in transactions
        if transaction.envelope_id == envelope_id
        and to_cents(transaction.amount) == cents
        and 0 <= (created_at - transaction.created_at).total_seconds() <= window_seconds
    ]
    if not candidates:
        return None
    latest = max(candidates, key=lambda transaction: transaction.created_at)
    return PossibleDuplicate(
        existing_transaction_id=latest.id,
        envelope_id=envelope_id,
        amount=amount,
        seconds_apart=(created_at - latest.created_at).total_seconds(),
    )


def filter_transactions(
    transactions: list[Transaction],
    transaction_filter: TransactionFilter | None,
) -> list[Transaction]:
    """
    Apply an optional TransactionFilter to a list of transactions.
    All filter fields are AND-ed together; merchant matches case-insensitively
    on a substring. Returns a new list ordered by date, then creation time.
    """
    ordered = sorted(transactions, key=lambda transaction: (transaction.date, transaction.created_at))
    if transaction_filter is None:
        return ordered

    results: list[Transaction] = []
    for transaction in ordered:
        if (
            transaction_filter.envelope_id is not None
            and transaction.envelope_id != transaction_filter.envelope_id
        ):
            continue

        if transaction_filter.since is not None and transaction.date < transaction_filter.since:
            continue

        if transaction_filter.until is not None and transaction.date > transaction_filter.until:
            continue

        if (
            transaction_filter.min_amount is not None
            and to_cents(transaction.amount) < to_cents(transaction_filter.min_amount)
        ):
            continue

        if (
            transaction_filter.max_amount is not None
            and to_cents(transaction.amount) > to_cents(transaction_filter.max_amount)
        ):
            continue

        if transaction_filter.merchant is not None:
            needle = transaction_filter.merchant.casefold()
            if needle not in (transaction.merchant or "").casefold():
                continue

        results.append(transaction)

    return results


class TransactionLedger:
    """
    Expenses recorded against envelopes.

    Every write moves ``envelope.spent`` through the storage increment
    primitive inside the same unit of work as the transaction row, so a
    reader never observes an expense without its spent effect or the
    reverse.
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

    def get(self, transaction_id: str) -> Transaction:
        transaction = self._storage.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    def list_transactions(
        self,
        period: PeriodKey | str,
        transaction_filter: TransactionFilter | None = None,
    ) -> list[Transaction]:
        return filter_transactions(self._storage.list_transactions(period_str(period)), transaction_filter)

    # ─── Add ──────────────────────────────────────────────────────────────────

    def add(
        self,
        period: PeriodKey | str,
        envelope_id: str,
        amount: AmountInput,
        description: str = "",
        merchant: str | None = None,
        date: date | None = None,
        notes: str | None = None,
        receipt_url: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransactionResult:
        """
        Record an expense and add its amount to the envelope's spent figure.

        Overspending is allowed; it is reported through the returned alert.
        A likely duplicate is reported but never blocks the write.
        """
        value = require_positive(amount)
        key = period_str(period)

        with self._storage.unit_of_work():
            if idempotency_key is not None:
                replayed_id = self._storage.get_operation(idempotency_key)
                if replayed_id is not None:
                    return TransactionResult(transaction=self.get(replayed_id), replayed=True)

            ensure_period(self._storage, self._scope, key)
            envelope = require_envelope(self._storage, key, envelope_id)
            transaction = build_record(
                Transaction,
                id=str(uuid4()),
                period_key=key,
                envelope_id=envelope_id,
                amount=value,
                description=description.strip(),
                merchant=merchant,
                date=date or default_entry_date(key),
                notes=notes,
                receipt_url=receipt_url,
                user_id=self._scope.user_id,
                household_id=self._scope.household_id,
                created_at=utcnow(),
            )
            duplicate = find_possible_duplicate(
                self._storage.list_transactions(key),
                envelope_id,
                value,
                transaction.created_at,
                self._config.duplicate_window_seconds,
            )
            self._storage.save_transaction(transaction)
            updated = self._storage.adjust_envelope(key, envelope_id, spent_delta=value)
            if idempotency_key is not None:
                self._storage.record_operation(idempotency_key, transaction.id)

        alert = evaluate_spending_alert(updated, envelope.spent, self._config.warning_threshold_percent)
        logger.info(
            "transaction_added",
            extra={
                "period_key": key,
                "envelope_id": envelope_id,
                "transaction_id": transaction.id,
                "amount": str(value),
            },
        )
        if duplicate is not None:
            logger.warning(
                "possible_duplicate_transaction",
                extra={
                    "transaction_id": transaction.id,
                    "existing_transaction_id": duplicate.existing_transaction_id,
                    "seconds_apart": duplicate.seconds_apart,
                },
            )
        self._events.emit("transaction_added", key, transaction.id)
        return TransactionResult(transaction=transaction, alert=alert, possible_duplicate=duplicate)

    # ─── Update ───────────────────────────────────────────────────────────────

    def update(
        self,
        transaction_id: str,
        amount: AmountInput | None = None,
        envelope_id: str | None = None,
        description: str | None = None,
        merchant: str | None = None,
        date: date | None = None,
        notes: str | None = None,
    ) -> TransactionResult:
        """
        Edit an expense.

        When the amount or envelope changes, the old spent effect is reversed
        and the new one applied within one unit of work. Applying the same
        patch twice leaves ``spent`` unchanged after the first application.

        The amount of a split expense is owned by its split legs and can only
        be changed through ``update_split``; changing its ``envelope_id`` only
        relabels the primary leg, which must stay one of the legs.
        """
        new_amount = require_positive(amount) if amount is not None else None

        with self._storage.unit_of_work():
            current = self.get(transaction_id)
            key = current.period_key
            target_envelope_id = envelope_id or current.envelope_id
            target_amount = new_amount if new_amount is not None else current.amount
            target = require_envelope(self._storage, key, target_envelope_id)
            spent_before = target.spent

            if current.is_split:
                if to_cents(target_amount) != to_cents(current.amount):
                    raise LedgerValidationError(
                        "The amount of a split expense is changed with update_split.",
                        field="amount",
                    )
                leg_envelopes = {split.envelope_id for split in self._storage.list_splits(transaction_id)}
                if target_envelope_id not in leg_envelopes:
                    raise LedgerValidationError(
                        "The primary envelope of a split expense must be one of its legs.",
                        field="envelope_id",
                    )
            elif target_envelope_id == current.envelope_id:
                delta = target_amount - current.amount
                if delta:
                    target = self._storage.adjust_envelope(key, target_envelope_id, spent_delta=delta)
            else:
                self._storage.adjust_envelope(key, current.envelope_id, spent_delta=-current.amount)
                target = self._storage.adjust_envelope(key, target_envelope_id, spent_delta=target_amount)

            changes = {
                "envelope_id": target_envelope_id,
                "amount": target_amount,
            }
            if description is not None:
                changes["description"] = description.strip()
            if merchant is not None:
                changes["merchant"] = merchant
            if date is not None:
                changes["date"] = date
            if notes is not None:
                changes["notes"] = notes
            updated = build_record(Transaction, **{**current.model_dump(), **changes})
            self._storage.save_transaction(updated)

        alert = None
        if not updated.is_split:
            alert = evaluate_spending_alert(target, spent_before, self._config.warning_threshold_percent)
        logger.info(
            "transaction_updated",
            extra={
                "period_key": key,
                "transaction_id": transaction_id,
                "envelope_id": target_envelope_id,
                "amount": str(target_amount),
            },
        )
        self._events.emit("transaction_updated", key, transaction_id)
        return TransactionResult(transaction=updated, alert=alert)

    # ─── Delete ───────────────────────────────────────────────────────────────

    def delete(self, transaction_id: str) -> Transaction:
        """
        Remove an expense and reverse its spent effect unconditionally.

        For a split expense every leg is reversed and the split rows removed.
        """
        with self._storage.unit_of_work():
            transaction = self.get(transaction_id)
            key = transaction.period_key
            if transaction.is_split:
                for split in self._storage.list_splits(transaction_id):
                    self._storage.adjust_envelope(key, split.envelope_id, spent_delta=-split.amount)
                self._storage.replace_splits(transaction_id, [])
            else:
                self._storage.adjust_envelope(key, transaction.envelope_id, spent_delta=-transaction.amount)
            self._storage.delete_transaction(transaction_id)

        logger.info(
            "transaction_deleted",
            extra={"period_key": key, "transaction_id": transaction_id, "amount": str(transaction.amount)},
        )
        self._events.emit("transaction_deleted", key, transaction_id)
        return transaction

    # ─── Receipts ─────────────────────────────────────────────────────────────

    def attach_receipt(self, transaction_id: str, receipt_url: str) -> Transaction:
        """
        Record where a receipt image was stored.

        The expense already exists; this never touches spent figures, and a
        failed upload upstream simply never calls it.
        """
        if not receipt_url.strip():
            raise LedgerValidationError("receipt_url must not be empty.", field="receipt_url")
        with self._storage.unit_of_work():
            transaction = self.get(transaction_id)
            updated = transaction.model_copy(update={"receipt_url": receipt_url.strip()})
            self._storage.save_transaction(updated)

        self._events.emit("transaction_updated", updated.period_key, transaction_id)
        return updated
