# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Shared fixtures for envelope-ledger tests."""

from __future__ import annotations

import pytest

from envelope_ledger import BudgetLedger, Envelope, LedgerScope

PERIOD = "2026-03"
NEXT_PERIOD = "2026-04"


@pytest.fixture
def ledger() -> BudgetLedger:
    """An empty ledger for one household member."""
    return BudgetLedger(scope=LedgerScope(user_id="user-1", household_id="house-1"))


@pytest.fixture
def funded(ledger: BudgetLedger) -> BudgetLedger:
    """A ledger with 2000.00 of income in PERIOD."""
    ledger.add_income(PERIOD, "2000.00", description="Salary")
    return ledger


@pytest.fixture
def courses(funded: BudgetLedger) -> Envelope:
    return funded.create_envelope(PERIOD, "Courses", icon="ShoppingCart", color="green", category="essential")


@pytest.fixture
def loisirs(funded: BudgetLedger) -> Envelope:
    return funded.create_envelope(PERIOD, "Loisirs", icon="Gamepad2", color="purple", category="lifestyle")
