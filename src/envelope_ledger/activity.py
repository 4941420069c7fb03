# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Household activity feed and undo.

Every user-facing mutation appends one ActivityEntry in the same unit of
work as the mutation itself. An entry that carries ``undo_data`` can be
reverted once: the inverse runs through the ordinary ledger operations, so
it is bound by exactly the same checks, and the entry is marked undone in
that same unit of work. A failed inverse leaves the entry undoable.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from typing import Any, Callable
from uuid import uuid4

from envelope_ledger.envelope import EnvelopeStore
from envelope_ledger.errors import InconsistentStateError, LedgerValidationError, NotFoundError
from envelope_ledger.events import EventBus
from envelope_ledger.goals import AutoContributionReport
from envelope_ledger.incomes import IncomeLedger
from envelope_ledger.money import ZERO, to_cents
from envelope_ledger.splits import SplitAllocator
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.transaction import TransactionLedger
from envelope_ledger.transfer import TransferEngine
from envelope_ledger.types import (
    ActivityAction,
    ActivityCategory,
    ActivityEntry,
    Envelope,
    Income,
    LedgerScope,
    RecurringTransaction,
    Split,
    Transaction,
    utcnow,
)

logger = logging.getLogger("envelope_ledger.activity")

ACTION_CATEGORY: dict[ActivityAction, ActivityCategory] = {
    "income_added": "income",
    "income_updated": "income",
    "income_deleted": "income",
    "expense_added": "expense",
    "expense_updated": "expense",
    "expense_deleted": "expense",
    "envelope_created": "envelope",
    "envelope_updated": "envelope",
    "envelope_deleted": "envelope",
    "allocation_made": "allocation",
    "transfer_made": "allocation",
    "recurring_created": "recurring",
    "recurring_updated": "recurring",
    "recurring_deleted": "recurring",
    "auto_contribution": "goal",
}


def activity_category(action: ActivityAction) -> ActivityCategory:
    return ACTION_CATEGORY[action]


def _optional_date(value: Any) -> date | None:
    return date.fromisoformat(value) if value else None


class ActivityLog:
    """
    Append-only record of what happened in the ledger, with one-shot undo.

    Usage::

        entry = ledger.list_activity(limit=1)[0]
        if entry.is_undoable:
            ledger.undo_activity(entry.id)
    """

    def __init__(
        self,
        storage: LedgerStorage,
        scope: LedgerScope,
        events: EventBus,
        envelopes: EnvelopeStore,
        incomes: IncomeLedger,
        transactions: TransactionLedger,
        splits: SplitAllocator,
        transfers: TransferEngine,
    ) -> None:
        self._storage = storage
        self._scope = scope
        self._events = events
        self._envelopes = envelopes
        self._incomes = incomes
        self._transactions = transactions
        self._splits = splits
        self._transfers = transfers
        self._inverses: dict[str, Callable[[ActivityEntry, dict[str, Any]], None]] = {
            "income_added": self._undo_income_added,
            "income_deleted": self._undo_income_deleted,
            "expense_added": self._undo_expense_added,
            "expense_deleted": self._undo_expense_deleted,
            "allocation_made": self._undo_allocation,
            "transfer_made": self._undo_transfer,
            "envelope_created": self._undo_envelope_created,
            "envelope_deleted": self._undo_envelope_deleted,
            "auto_contribution": self._undo_allocation,
        }

    # ─── Queries ──────────────────────────────────────────────────────────────

    def get(self, activity_id: str) -> ActivityEntry:
        entry = self._storage.get_activity(activity_id)
        if entry is None:
            raise NotFoundError("activity", activity_id)
        return entry

    def list_activity(self, limit: int = 50, category: ActivityCategory | None = None) -> list[ActivityEntry]:
        """Most recent entries first, optionally restricted to one category."""
        if limit < 1:
            raise LedgerValidationError("limit must be at least 1.", field="limit")
        entries = [
            entry
            for entry in reversed(self._storage.list_activity())
            if category is None or ACTION_CATEGORY[entry.action] == category
        ]
        return entries[:limit]

    # ─── Recording ────────────────────────────────────────────────────────────

    def record(
        self,
        action: ActivityAction,
        entity_type: str,
        entity_id: str | None = None,
        period_key: str | None = None,
        details: dict[str, Any] | None = None,
        undo_data: dict[str, Any] | None = None,
    ) -> ActivityEntry:
        """Append one entry. Call it inside the unit of work of the action it describes."""
        entry = ActivityEntry(
            id=str(uuid4()),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            period_key=period_key,
            details=details or {},
            undo_data=undo_data,
            user_id=self._scope.user_id,
            household_id=self._scope.household_id,
        )
        self._storage.append_activity(entry)
        logger.debug(
            "activity_recorded",
            extra={"activity_id": entry.id, "action": action, "entity_id": entity_id, "period_key": period_key},
        )
        return entry

    def record_income(self, action: ActivityAction, income: Income) -> ActivityEntry:
        payload = {
            "amount": str(income.amount),
            "description": income.description,
            "date": income.date.isoformat(),
        }
        return self.record(
            action,
            "income",
            income.id,
            income.period_key,
            details=payload,
            undo_data=None if action == "income_updated" else payload,
        )

    def record_expense(
        self,
        action: ActivityAction,
        transaction: Transaction,
        splits: Iterable[Split] = (),
    ) -> ActivityEntry:
        details = {
            "amount": str(transaction.amount),
            "envelope_id": transaction.envelope_id,
            "description": transaction.description,
            "merchant": transaction.merchant,
            "is_split": transaction.is_split,
        }
        undo_data: dict[str, Any] | None = None
        if action == "expense_added":
            undo_data = {"amount": str(transaction.amount)}
        elif action == "expense_deleted":
            undo_data = {
                **details,
                "date": transaction.date.isoformat(),
                "notes": transaction.notes,
                "receipt_url": transaction.receipt_url,
                "splits": [{"envelope_id": split.envelope_id, "amount": str(split.amount)} for split in splits],
            }
        return self.record(
            action, "transaction", transaction.id, transaction.period_key, details=details, undo_data=undo_data
        )

    def record_envelope(
        self,
        action: ActivityAction,
        envelope: Envelope,
        reassigned_to: str | None = None,
        reassigned_ids: Iterable[str] = (),
    ) -> ActivityEntry:
        details = {"name": envelope.name, "category": envelope.category, "allocated": str(envelope.allocated)}
        undo_data: dict[str, Any] | None = None
        if action == "envelope_created":
            undo_data = {"name": envelope.name}
        elif action == "envelope_deleted":
            undo_data = {
                **details,
                "icon": envelope.icon,
                "color": envelope.color,
                "rollover": envelope.rollover,
                "rollover_strategy": envelope.rollover_strategy,
                "rollover_percentage": envelope.rollover_percentage,
                "max_rollover_amount": (
                    str(envelope.max_rollover_amount) if envelope.max_rollover_amount is not None else None
                ),
                "reassigned_to": reassigned_to,
                "reassigned_transaction_ids": list(reassigned_ids),
            }
        return self.record(action, "envelope", envelope.id, envelope.period_key, details=details, undo_data=undo_data)

    def record_allocation(self, period_key: str, envelope_id: str, amount: Decimal) -> ActivityEntry:
        """``amount`` is signed: positive for money assigned, negative for money returned."""
        payload = {"amount": str(amount)}
        return self.record("allocation_made", "envelope", envelope_id, period_key, details=payload, undo_data=payload)

    def record_transfer(self, period_key: str, from_envelope_id: str, to_envelope_id: str, amount: Decimal) -> ActivityEntry:
        payload = {"from_envelope_id": from_envelope_id, "to_envelope_id": to_envelope_id, "amount": str(amount)}
        return self.record("transfer_made", "envelope", from_envelope_id, period_key, details=payload, undo_data=payload)

    def record_recurring(self, action: ActivityAction, rule: RecurringTransaction) -> ActivityEntry:
        details = {
            "envelope_id": rule.envelope_id,
            "amount": str(rule.amount),
            "frequency": rule.frequency,
            "next_due_date": rule.next_due_date.isoformat(),
        }
        return self.record(action, "recurring", rule.id, details=details)

    def record_auto_contributions(self, report: AutoContributionReport) -> list[ActivityEntry]:
        """One entry per goal examined; only funded goals can be undone."""
        recorded = []
        for contribution in report.entries:
            details = {
                "envelope_id": contribution.envelope_id,
                "status": contribution.status,
                "amount": str(contribution.amount),
                "reason": contribution.reason,
            }
            undo_data = None
            if contribution.status == "allocated":
                undo_data = {"envelope_id": contribution.envelope_id, "amount": str(contribution.amount)}
            recorded.append(
                self.record(
                    "auto_contribution",
                    "goal",
                    contribution.goal_id,
                    report.period_key,
                    details=details,
                    undo_data=undo_data,
                )
            )
        return recorded

    # ─── Undo ─────────────────────────────────────────────────────────────────

    def undo(self, activity_id: str) -> ActivityEntry:
        """
        Revert one entry and mark it undone, committed together.

        Raises InconsistentStateError for an entry that was already undone and
        LedgerValidationError for one that carries no undo data. Any error
        raised by the inverse operation discards the whole undo.
        """
        with self._events.deferred(), self._storage.unit_of_work():
            entry = self.get(activity_id)
            if entry.undone_at is not None:
                raise InconsistentStateError(f"Activity {activity_id!r} has already been undone.")
            inverse = self._inverses.get(entry.action)
            if inverse is None or entry.undo_data is None:
                raise LedgerValidationError(f"Activity {entry.action!r} cannot be undone.", field="activity_id")

            inverse(entry, entry.undo_data)
            undone_at = utcnow()
            self._storage.mark_activity_undone(activity_id, undone_at)
            self._events.emit("activity_undone", entry.period_key, activity_id)

        logger.info(
            "activity_undone",
            extra={"activity_id": activity_id, "action": entry.action, "period_key": entry.period_key},
        )
        return entry.model_copy(update={"undone_at": undone_at})

    def _undo_income_added(self, entry: ActivityEntry, undo: dict[str, Any]) -> None:
        self._incomes.delete(self._period(entry), self._entity(entry))

    def _undo_income_deleted(self, entry: ActivityEntry, undo: dict[str, Any]) -> None:
        self._incomes.add(
            self._period(entry),
            undo["amount"],
            description=undo.get("description", ""),
            date=_optional_date(undo.get("date")),
        )

    def _undo_expense_added(self, entry: ActivityEntry, undo: dict[str, Any]) -> None:
        self._transactions.delete(self._entity(entry))

    def _undo_expense_deleted(self, entry: ActivityEntry, undo: dict[str, Any]) -> None:
        period = self._period(entry)
        legs = undo.get("splits") or []
        if legs:
            self._splits.add_split_transaction(
                period,
                undo["amount"],
                legs,
                description=undo.get("description", ""),
                merchant=undo.get("merchant"),
                date=_optional_date(undo.get("date")),
                notes=undo.get("notes"),
                primary_envelope_id=undo["envelope_id"],
            )
            return
        self._transactions.add(
            period,
            undo["envelope_id"],
            undo["amount"],
            description=undo.get("description", ""),
            merchant=undo.get("merchant"),
            date=_optional_date(undo.get("date")),
            notes=undo.get("notes"),
            receipt_url=undo.get("receipt_url"),
        )

    def _undo_allocation(self, entry: ActivityEntry, undo: dict[str, Any]) -> None:
        envelope_id = undo.get("envelope_id") or self._entity(entry)
        amount = Decimal(undo["amount"])
        if amount > ZERO:
            self._envelopes.deallocate(self._period(entry), envelope_id, amount)
        elif amount < ZERO:
            self._envelopes.allocate(self._period(entry), envelope_id, -amount)

    def _undo_transfer(self, entry: ActivityEntry, undo: dict[str, Any]) -> None:
        self._transfers.transfer(
            self._period(entry), undo["to_envelope_id"], undo["from_envelope_id"], undo["amount"]
        )

    def _undo_envelope_created(self, entry: ActivityEntry, undo: dict[str, Any]) -> None:
        # Refused by delete while expenses or split legs still use the envelope.
        self._envelopes.delete(self._period(entry), self._entity(entry))

    def _undo_envelope_deleted(self, entry: ActivityEntry, undo: dict[str, Any]) -> None:
        period = self._period(entry)
        restored = self._envelopes.create(
            period,
            undo["name"],
            icon=undo.get("icon", "Wallet"),
            color=undo.get("color", "blue"),
            category=undo.get("category", "lifestyle"),
            rollover=undo.get("rollover", False),
            rollover_strategy=undo.get("rollover_strategy", "full"),
            rollover_percentage=undo.get("rollover_percentage"),
            max_rollover_amount=undo.get("max_rollover_amount"),
            envelope_id=self._entity(entry),
        )
        reassigned_to = undo.get("reassigned_to")
        for transaction_id in undo.get("reassigned_transaction_ids", []):
            transaction = self._storage.get_transaction(transaction_id)
            # Expenses deleted or moved again since then stay where they are.
            if transaction is not None and transaction.envelope_id == reassigned_to:
                self._transactions.update(transaction_id, envelope_id=restored.id)
        allocated = Decimal(undo.get("allocated", "0"))
        if to_cents(allocated) > 0:
            self._envelopes.allocate(period, restored.id, allocated)

    @staticmethod
    def _period(entry: ActivityEntry) -> str:
        if entry.period_key is None:
            raise InconsistentStateError(f"Activity {entry.id!r} has no period to undo in.")
        return entry.period_key

    @staticmethod
    def _entity(entry: ActivityEntry) -> str:
        if entry.entity_id is None:
            raise InconsistentStateError(f"Activity {entry.id!r} does not name the record to undo.")
        return entry.entity_id
