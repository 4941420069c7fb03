# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal

from pydantic import BaseModel

from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import compute_to_be_budgeted, period_str
from envelope_ledger.events import EventBus
from envelope_ledger.money import ZERO, Money, to_cents, total, within_tolerance
from envelope_ledger.storage.interface import LedgerStorage
from envelope_ledger.types import PeriodKey, Split, Transaction

logger = logging.getLogger("envelope_ledger.ledger")


class SpentDrift(BaseModel, frozen=True):
    envelope_id: str
    envelope_name: str
    stored_spent: Money
    expected_spent: Money


class SplitSumIssue(BaseModel, frozen=True):
    transaction_id: str
    transaction_amount: Money
    split_total: Money


class IntegrityReport(BaseModel, frozen=True):
    period_key: str
    to_be_budgeted: Money
    spent_drift: list[SpentDrift]
    split_issues: list[SplitSumIssue]
    # Expenses or legs naming an envelope that is not in the period.
    orphaned_transaction_ids: list[str]
    repaired: bool = False

    @property
    def is_consistent(self) -> bool:
        return not (self.spent_drift or self.split_issues or self.orphaned_transaction_ids)


def expected_spent_by_envelope(transactions: list[Transaction], splits: list[Split]) -> dict[str, Decimal]:
    """Direct expenses plus split legs, per envelope. Split parents contribute nothing directly."""
    expected: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for transaction in transactions:
        if not transaction.is_split:
            expected[transaction.envelope_id] += transaction.amount
    for split in splits:
        expected[split.envelope_id] += split.amount
    return dict(expected)


class IntegrityChecker:
    def __init__(self, storage: LedgerStorage, config: LedgerConfig, events: EventBus) -> None:
        self._storage = storage
        self._config = config
        self._events = events

    def check(self, period: PeriodKey | str, repair: bool = False) -> IntegrityReport:
        """
        Recompute every envelope's spent figure from expenses and split legs.

        With ``repair=True`` drifted spent figures are rewritten from the
        recomputation in one unit of work. Split sum mismatches and orphaned
        references are reported but never repaired automatically.
        """
        key = period_str(period)
        with self._storage.unit_of_work():
            envelopes = self._storage.list_envelopes(key)
            transactions = self._storage.list_transactions(key)
            splits = self._storage.list_period_splits(key)
            expected = expected_spent_by_envelope(transactions, splits)
            known_ids = {envelope.id for envelope in envelopes}

            drift = [
                SpentDrift(
                    envelope_id=envelope.id,
                    envelope_name=envelope.name,
                    stored_spent=envelope.spent,
                    expected_spent=expected.get(envelope.id, ZERO),
                )
                for envelope in envelopes
                if to_cents(envelope.spent) != to_cents(expected.get(envelope.id, ZERO))
            ]

            legs_by_parent: dict[str, list[Split]] = defaultdict(list)
            for split in splits:
                legs_by_parent[split.parent_transaction_id].append(split)
            split_issues = []
            for transaction in transactions:
                if not transaction.is_split:
                    continue
                leg_total = total(split.amount for split in legs_by_parent.get(transaction.id, []))
                if not within_tolerance(leg_total, transaction.amount, self._config.split_tolerance):
                    split_issues.append(
                        SplitSumIssue(
                            transaction_id=transaction.id,
                            transaction_amount=transaction.amount,
                            split_total=leg_total,
                        )
                    )

            orphaned = sorted(
                {transaction.id for transaction in transactions if transaction.envelope_id not in known_ids}
                | {split.parent_transaction_id for split in splits if split.envelope_id not in known_ids}
            )

            if repair and drift:
                for item in drift:
                    self._storage.adjust_envelope(
                        key, item.envelope_id, spent_delta=item.expected_spent - item.stored_spent
                    )

            to_be_budgeted = compute_to_be_budgeted(
                self._storage.list_incomes(key), self._storage.list_envelopes(key)
            )

        report = IntegrityReport(
            period_key=key,
            to_be_budgeted=to_be_budgeted,
            spent_drift=drift,
            split_issues=split_issues,
            orphaned_transaction_ids=orphaned,
            repaired=repair and bool(drift),
        )
        if not report.is_consistent:
            logger.warning(
                "integrity_issues_found",
                extra={
                    "period_key": key,
                    "spent_drift": len(drift),
                    "split_issues": len(split_issues),
                    "orphaned": len(orphaned),
                },
            )
        if report.repaired:
            logger.info("integrity_repaired", extra={"period_key": key, "envelopes": len(drift)})
            self._events.emit("integrity_repaired", key)
        return report
