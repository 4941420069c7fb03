# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from envelope_ledger.envelope import available_balance, compute_to_be_budgeted, utilization_percent
from envelope_ledger.money import Money, exceeds, total
from envelope_ledger.types import Envelope, EnvelopeCategory, Income


class EnvelopeSummary(BaseModel, frozen=True):
    envelope_id: str
    period_key: str
    name: str
    category: EnvelopeCategory
    allocated: Money
    spent: Money
    available: Money
    utilization_percent: Optional[Decimal] = None
    overspent: bool


class PeriodSummary(BaseModel, frozen=True):
    period_key: str
    total_income: Money
    total_allocated: Money
    total_spent: Money
    total_available: Money
    to_be_budgeted: Money
    envelopes: list[EnvelopeSummary]


def build_envelope_summary(envelope: Envelope) -> EnvelopeSummary:
    """
    Derive an EnvelopeSummary snapshot from a stored envelope.

    The snapshot is point-in-time; re-read the envelope before calling this
    if current figures are needed.
    """
    return EnvelopeSummary(
        envelope_id=envelope.id,
        period_key=envelope.period_key,
        name=envelope.name,
        category=envelope.category,
        allocated=envelope.allocated,
        spent=envelope.spent,
        available=available_balance(envelope),
        utilization_percent=utilization_percent(envelope),
        overspent=exceeds(envelope.spent, envelope.allocated),
    )


def build_period_summary(period_key: str, incomes: list[Income], envelopes: list[Envelope]) -> PeriodSummary:
    """Totals for one period, with envelopes in display order."""
    summaries = [build_envelope_summary(envelope) for envelope in envelopes]
    return PeriodSummary(
        period_key=period_key,
        total_income=total(income.amount for income in incomes),
        total_allocated=total(envelope.allocated for envelope in envelopes),
        total_spent=total(envelope.spent for envelope in envelopes),
        total_available=total(summary.available for summary in summaries),
        to_be_budgeted=compute_to_be_budgeted(incomes, envelopes),
        envelopes=summaries,
    )

