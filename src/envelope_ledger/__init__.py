# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
envelope-ledger: envelope budgeting for households.

Quick start::

    from envelope_ledger import BudgetLedger, LedgerScope

    ledger = BudgetLedger(scope=LedgerScope(user_id="u-1"))
    ledger.add_income("2026-03", "2000")
    courses = ledger.create_envelope("2026-03", "Courses", category="essential")
    ledger.allocate("2026-03", courses.id, "500")

    result = ledger.add_transaction("2026-03", courses.id, "45,30")
    if result.alert is not None:
        print(result.alert.level)
"""

from envelope_ledger.activity import ActivityLog, activity_category
from envelope_ledger.alerts import AlertLevel, SpendingAlert, evaluate_spending_alert
from envelope_ledger.config import LedgerConfig
from envelope_ledger.envelope import available_balance, compute_to_be_budgeted, utilization_percent
from envelope_ledger.errors import (
    ConcurrencyConflictError,
    InconsistentStateError,
    InsufficientFundsError,
    LedgerError,
    LedgerValidationError,
    LimitExceededError,
    NotFoundError,
    SplitMismatchError,
)
from envelope_ledger.events import LedgerEvent, LedgerEventKind
from envelope_ledger.goals import AutoContributionEntry, AutoContributionReport, GoalProgress, reached_milestones
from envelope_ledger.incomes import DeficitPlan, DeficitStep, IncomeChangeResult, plan_deficit_coverage
from envelope_ledger.integrity import IntegrityReport, SplitSumIssue, SpentDrift
from envelope_ledger.ledger import BudgetLedger
from envelope_ledger.money import format_amount, parse_amount, to_cents
from envelope_ledger.query import EnvelopeSummary, PeriodSummary
from envelope_ledger.recurring import RecurringOccurrence, RecurringRunReport, next_due_date
from envelope_ledger.rollover import CarryOver, OverdraftSignal, RolloverReport, compute_carry_over
from envelope_ledger.splits import SplitResult, SplitShare
from envelope_ledger.storage import LedgerStorage, MemoryStorage, RolloverHistoryArchive
from envelope_ledger.transaction import PossibleDuplicate, TransactionResult, filter_transactions
from envelope_ledger.transfer import TransferResult
from envelope_ledger.types import (
    ActivityAction,
    ActivityCategory,
    ActivityEntry,
    Envelope,
    EnvelopeCategory,
    EnvelopeColor,
    EnvelopeIcon,
    GoalPriority,
    Income,
    LedgerScope,
    MonthlyPeriod,
    PeriodKey,
    RecurringFrequency,
    RecurringTransaction,
    RolloverHistoryEntry,
    RolloverStrategy,
    SavingsGoal,
    Split,
    SplitInput,
    Transaction,
    TransactionFilter,
)

__all__ = [
    # Core class
    "BudgetLedger",
    "LedgerConfig",
    "LedgerScope",
    # Records
    "PeriodKey",
    "MonthlyPeriod",
    "Envelope",
    "EnvelopeCategory",
    "EnvelopeColor",
    "EnvelopeIcon",
    "Income",
    "Transaction",
    "TransactionFilter",
    "Split",
    "SplitInput",
    "SavingsGoal",
    "GoalPriority",
    "RolloverStrategy",
    "RolloverHistoryEntry",
    "RecurringTransaction",
    "RecurringFrequency",
    "ActivityEntry",
    "ActivityAction",
    "ActivityCategory",
    "ActivityLog",
    # Results
    "TransactionResult",
    "PossibleDuplicate",
    "SpendingAlert",
    "AlertLevel",
    "SplitResult",
    "SplitShare",
    "TransferResult",
    "RolloverReport",
    "CarryOver",
    "OverdraftSignal",
    "IncomeChangeResult",
    "DeficitPlan",
    "DeficitStep",
    "GoalProgress",
    "AutoContributionReport",
    "AutoContributionEntry",
    "IntegrityReport",
    "SpentDrift",
    "SplitSumIssue",
    "EnvelopeSummary",
    "PeriodSummary",
    "RecurringRunReport",
    "RecurringOccurrence",
    "LedgerEvent",
    "LedgerEventKind",
    # Errors
    "LedgerError",
    "LedgerValidationError",
    "InsufficientFundsError",
    "LimitExceededError",
    "SplitMismatchError",
    "InconsistentStateError",
    "ConcurrencyConflictError",
    "NotFoundError",
    # Storage
    "LedgerStorage",
    "MemoryStorage",
    "RolloverHistoryArchive",
    # Utilities
    "parse_amount",
    "to_cents",
    "format_amount",
    "available_balance",
    "utilization_percent",
    "compute_to_be_budgeted",
    "evaluate_spending_alert",
    "filter_transactions",
    "compute_carry_over",
    "plan_deficit_coverage",
    "reached_milestones",
    "next_due_date",
    "activity_category",
]
