# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""
Concurrent household members sharing one ledger.

Each worker thread plays a household member issuing ordinary operations.
The in-memory store serialises units of work, so no increment is lost and
bound checks made inside a unit of work can never be overtaken.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from envelope_ledger import BudgetLedger, InsufficientFundsError, LedgerScope, MemoryStorage

PERIOD = "2026-03"


@pytest.fixture
def shared_storage() -> MemoryStorage:
    return MemoryStorage()


def _member(storage: MemoryStorage, user_id: str) -> BudgetLedger:
    return BudgetLedger(storage=storage, scope=LedgerScope(user_id=user_id, household_id="house-1"))


class TestConcurrentWriters:
    def test_no_lost_spent_updates(self, shared_storage: MemoryStorage) -> None:
        alice = _member(shared_storage, "alice")
        bob = _member(shared_storage, "bob")
        alice.add_income(PERIOD, "1000")
        envelope = alice.create_envelope(PERIOD, "Courses")
        alice.allocate(PERIOD, envelope.id, "1000")

        def spend(index: int) -> None:
            member = alice if index % 2 else bob
            member.add_transaction(PERIOD, envelope.id, "1.25", description=f"item {index}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(spend, range(200)))

        assert alice.get_envelope(PERIOD, envelope.id).spent == Decimal("250.00")
        assert len(alice.list_transactions(PERIOD)) == 200
        assert alice.check_integrity(PERIOD).is_consistent

    def test_racing_allocations_never_exceed_to_be_budgeted(self, shared_storage: MemoryStorage) -> None:
        alice = _member(shared_storage, "alice")
        alice.add_income(PERIOD, "100")
        envelopes = [alice.create_envelope(PERIOD, f"Envelope {index}") for index in range(4)]

        def allocate(index: int) -> bool:
            member = _member(shared_storage, f"member-{index % 3}")
            try:
                member.allocate(PERIOD, envelopes[index % 4].id, "7")
            except InsufficientFundsError:
                return False
            return True

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(allocate, range(40)))

        assert outcomes.count(True) == 14
        assert alice.to_be_budgeted(PERIOD) == Decimal("2.00")

    def test_racing_transfers_keep_totals(self, shared_storage: MemoryStorage) -> None:
        ledger = _member(shared_storage, "alice")
        ledger.add_income(PERIOD, "200")
        left = ledger.create_envelope(PERIOD, "Left")
        right = ledger.create_envelope(PERIOD, "Right")
        ledger.allocate(PERIOD, left.id, "100")
        ledger.allocate(PERIOD, right.id, "100")

        def move(index: int) -> None:
            source, target = (left, right) if index % 2 else (right, left)
            try:
                ledger.transfer(PERIOD, source.id, target.id, "3")
            except InsufficientFundsError:
                pass

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(move, range(100)))

        envelopes = ledger.list_envelopes(PERIOD)
        assert sum((envelope.allocated for envelope in envelopes), Decimal("0")) == Decimal("200.00")
        assert all(envelope.allocated >= 0 for envelope in envelopes)
        assert ledger.to_be_budgeted(PERIOD) == Decimal("0.00")
