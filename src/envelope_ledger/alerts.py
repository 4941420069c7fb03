# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Spending alerts for envelopes.

An alert is a pure function of an envelope's state before and after an
expense. Nothing here is stored; callers recompute alerts from the
envelope figures whenever they need them.

Thresholds are static: a warning when spending crosses
``warning_threshold_percent`` of the allocation, and an over-budget alert
whenever spending exceeds the allocation.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel

from envelope_ledger.money import Money, exceeds, percent_of
from envelope_ledger.types import Envelope


# ---------------------------------------------------------------------------
# Alert models
# ---------------------------------------------------------------------------

AlertLevel = Literal["warning", "over_budget"]


class SpendingAlert(BaseModel, frozen=True):
    """Derived signal returned alongside an expense write."""

    level: AlertLevel
    envelope_id: str
    envelope_name: str
    allocated: Money
    spent_before: Money
    spent_after: Money
    # None when the envelope has no allocation at all.
    percent_used: Optional[Decimal] = None


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate_spending_alert(
    envelope: Envelope,
    spent_before: Decimal,
    warning_threshold_percent: int = 80,
) -> SpendingAlert | None:
    """
    Compare an envelope's spent figure before and after an expense.

    Returns an ``over_budget`` alert when ``envelope.spent`` exceeds the
    allocation, a ``warning`` alert when spending moved from below the
    warning threshold to at or above it, and None otherwise.
    """
    allocated = envelope.allocated
    spent_after = envelope.spent
    percent_after = percent_of(spent_after, allocated)

    level: AlertLevel | None = None
    if exceeds(spent_after, allocated):
        level = "over_budget"
    elif percent_after is not None:
        percent_before = percent_of(spent_before, allocated) or Decimal("0")
        threshold = Decimal(warning_threshold_percent)
        if percent_before < threshold <= percent_after:
            level = "warning"

    if level is None:
        return None

    return SpendingAlert(
        level=level,
        envelope_id=envelope.id,
        envelope_name=envelope.name,
        allocated=allocated,
        spent_before=spent_before,
        spent_after=spent_after,
        percent_used=percent_after,
    )
