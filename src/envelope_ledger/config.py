# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
from __future__ import annotations

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, Field

from envelope_ledger.money import Money


class LedgerConfig(BaseModel, frozen=True):
    """
    Configuration for a BudgetLedger.

    All fields are optional. Pass an instance at construction time::

        ledger = BudgetLedger(config=LedgerConfig(max_envelopes_per_period=20))

    Attributes:
        max_envelopes_per_period: Cap on the number of envelopes one monthly
            period may hold. Creating one more raises LimitExceededError.
        split_tolerance: Largest accepted difference between the sum of split
            legs and the parent transaction total.
        duplicate_window_seconds: Window in which an expense with the same
            amount on the same envelope is flagged as a possible duplicate.
        warning_threshold_percent: Utilization at which an expense raises a
            warning alert. Anything above 100% is always an over-budget alert.
        currency_symbol: Symbol used in error messages and summaries.
    """

    max_envelopes_per_period: Annotated[int, Field(gt=0)] = 50
    split_tolerance: Money = Decimal("0.01")
    duplicate_window_seconds: Annotated[int, Field(ge=0)] = 300
    warning_threshold_percent: Annotated[int, Field(gt=0, le=100)] = 80
    currency_symbol: str = "€"
