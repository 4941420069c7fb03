# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from envelope_ledger.errors import LedgerValidationError
from envelope_ledger.money import ZERO, Money

ModelT = TypeVar("ModelT", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def build_record(model: type[ModelT], **fields: Any) -> ModelT:
    """
    Construct a record, reporting constraint failures as LedgerValidationError.

    Only the first pydantic error is surfaced; its location becomes ``field``.
    """
    try:
        return model(**fields)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or None
        raise LedgerValidationError(
            f"Invalid {model.__name__.lower()}: {first['msg']}", field=location
        ) from exc


# ─── Closed value sets ────────────────────────────────────────────────────────

EnvelopeCategory = Literal["essential", "lifestyle", "savings"]

EnvelopeIcon = Literal[
    "ShoppingCart",
    "Utensils",
    "Car",
    "Gamepad2",
    "Heart",
    "ShoppingBag",
    "Receipt",
    "PiggyBank",
    "Home",
    "Plane",
    "Gift",
    "Music",
    "Wifi",
    "Smartphone",
    "Coffee",
    "Wallet",
]

EnvelopeColor = Literal["blue", "green", "orange", "pink", "purple", "yellow", "teal"]

RolloverStrategy = Literal["none", "full", "percentage", "capped"]

GoalPriority = Literal["essential", "high", "medium", "low"]

# Lower sorts first when funds are short.
GOAL_PRIORITY_ORDER: dict[str, int] = {
    "essential": 0,
    "high": 1,
    "medium": 2,
    "low": 3,
}

IncomeSource = Literal["manual", "rollover"]

RecurringFrequency = Literal["weekly", "biweekly", "monthly", "quarterly", "yearly"]

ActivityAction = Literal[
    "income_added",
    "income_updated",
    "income_deleted",
    "expense_added",
    "expense_updated",
    "expense_deleted",
    "envelope_created",
    "envelope_updated",
    "envelope_deleted",
    "allocation_made",
    "transfer_made",
    "recurring_created",
    "recurring_updated",
    "recurring_deleted",
    "auto_contribution",
]

ActivityCategory = Literal["income", "expense", "envelope", "allocation", "recurring", "goal"]

# ─── Period ───────────────────────────────────────────────────────────────────

_PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


class PeriodKey(BaseModel, frozen=True):
    """Identifies one calendar month. String form is ``YYYY-MM``."""

    year: int = Field(..., ge=1970, le=9999)
    month: int = Field(..., ge=1, le=12)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def __lt__(self, other: PeriodKey) -> bool:
        return (self.year, self.month) < (other.year, other.month)

    def __le__(self, other: PeriodKey) -> bool:
        return (self.year, self.month) <= (other.year, other.month)

    @classmethod
    def parse(cls, text: str) -> PeriodKey:
        match = _PERIOD_PATTERN.match(text.strip())
        if match is None:
            raise ValueError(f"Period key must look like 'YYYY-MM', got {text!r}")
        return cls(year=int(match.group(1)), month=int(match.group(2)))

    @classmethod
    def coerce(cls, value: PeriodKey | str) -> PeriodKey:
        return value if isinstance(value, PeriodKey) else cls.parse(value)

    @classmethod
    def from_date(cls, value: date) -> PeriodKey:
        return cls(year=value.year, month=value.month)

    def next(self) -> PeriodKey:
        if self.month == 12:
            return PeriodKey(year=self.year + 1, month=1)
        return PeriodKey(year=self.year, month=self.month + 1)

    def previous(self) -> PeriodKey:
        if self.month == 1:
            return PeriodKey(year=self.year - 1, month=12)
        return PeriodKey(year=self.year, month=self.month - 1)

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month


class MonthlyPeriod(BaseModel):
    """A month that has been referenced at least once. Created lazily."""

    key: str
    user_id: str
    household_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# ─── Tenancy ──────────────────────────────────────────────────────────────────


class LedgerScope(BaseModel, frozen=True):
    """Opaque tenancy keys supplied by the household/auth collaborator."""

    user_id: str = Field(..., min_length=1)
    household_id: Optional[str] = None


# ─── Envelope ─────────────────────────────────────────────────────────────────


class Envelope(BaseModel):
    """One budget bucket in one monthly period."""

    id: str
    period_key: str
    name: str = Field(..., min_length=1, max_length=60)
    icon: EnvelopeIcon = "Wallet"
    color: EnvelopeColor = "blue"
    category: EnvelopeCategory = "lifestyle"
    position: int = 0
    allocated: Money = Field(default=ZERO, ge=0)
    spent: Money = Field(default=ZERO, ge=0)
    rollover: bool = False
    rollover_strategy: RolloverStrategy = "full"
    rollover_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    max_rollover_amount: Optional[Money] = Field(default=None, ge=0)
    user_id: str = ""
    household_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("name")
    @classmethod
    def name_must_not_be_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be blank")
        return stripped

    @model_validator(mode="after")
    def strategy_parameters_present(self) -> Envelope:
        if self.rollover_strategy == "percentage" and self.rollover_percentage is None:
            raise ValueError("rollover_percentage is required for the 'percentage' strategy")
        if self.rollover_strategy == "capped" and self.max_rollover_amount is None:
            raise ValueError("max_rollover_amount is required for the 'capped' strategy")
        return self

    @property
    def available(self) -> Decimal:
        """Unspent allocation. Negative when the envelope is overspent."""
        return self.allocated - self.spent


# ─── Income ───────────────────────────────────────────────────────────────────


class Income(BaseModel):
    id: str
    period_key: str
    amount: Money = Field(..., gt=0)
    description: str = ""
    date: date
    source: IncomeSource = "manual"
    user_id: str = ""
    household_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# ─── Transaction / Split ──────────────────────────────────────────────────────


class Transaction(BaseModel):
    """
    An expense attributed to an envelope.

    When ``is_split`` is set, ``envelope_id`` names the primary leg only and
    the spent effect lives entirely in the associated Split rows.
    """

    id: str
    period_key: str
    envelope_id: str
    amount: Money = Field(..., gt=0)
    description: str = ""
    merchant: Optional[str] = None
    date: date
    notes: Optional[str] = None
    is_split: bool = False
    receipt_url: Optional[str] = None
    user_id: str = ""
    household_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Split(BaseModel):
    """One envelope's share of a split transaction."""

    id: str
    parent_transaction_id: str
    period_key: str
    envelope_id: str
    amount: Money = Field(..., gt=0)
    created_at: datetime = Field(default_factory=utcnow)


class SplitInput(BaseModel, frozen=True):
    """Caller-supplied split leg."""

    envelope_id: str = Field(..., min_length=1)
    amount: Money = Field(..., gt=0)


class TransactionFilter(BaseModel):
    """Optional filter applied to transaction queries. All fields are AND-ed."""

    envelope_id: Optional[str] = None
    since: Optional[date] = None
    until: Optional[date] = None
    min_amount: Optional[Money] = None
    max_amount: Optional[Money] = None
    merchant: Optional[str] = None


# ─── Savings goal ─────────────────────────────────────────────────────────────


class SavingsGoal(BaseModel):
    """Target attached to exactly one envelope. Persists across periods."""

    id: str
    envelope_id: str
    target_amount: Money = Field(..., gt=0)
    target_date: Optional[date] = None
    name: Optional[str] = None
    priority: GoalPriority = "medium"
    auto_contribute: bool = False
    monthly_contribution: Optional[Money] = Field(default=None, gt=0)
    contribution_percentage: Optional[float] = Field(default=None, gt=0, le=100)
    celebration_thresholds: list[int] = Field(default_factory=lambda: [100])
    is_paused: bool = False
    user_id: str = ""
    household_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("celebration_thresholds")
    @classmethod
    def thresholds_in_range(cls, value: list[int]) -> list[int]:
        for threshold in value:
            if not 0 < threshold <= 100:
                raise ValueError(f"celebration threshold {threshold} must be within 1-100")
        return sorted(set(value))


# ─── Rollover history ─────────────────────────────────────────────────────────


class RolloverHistoryEntry(BaseModel, frozen=True):
    """Append-only audit record of one envelope carried into another month."""

    id: str
    envelope_id: str
    envelope_name: str
    source_month_key: str
    target_month_key: str
    amount: Money
    strategy: RolloverStrategy
    is_capped: bool = False
    user_id: str = ""
    household_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# ─── Activity ─────────────────────────────────────────────────────────────────


class ActivityEntry(BaseModel):
    """
    One user-visible action in the household activity feed.

    Entries are append-only. ``undo_data`` holds what the inverse operation
    needs; it is None for actions that cannot be undone. ``undone_at`` is the
    only field ever written after the entry is appended.
    """

    id: str
    action: ActivityAction
    entity_type: str
    entity_id: Optional[str] = None
    period_key: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)
    undo_data: Optional[dict[str, Any]] = None
    undone_at: Optional[datetime] = None
    user_id: str = ""
    household_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_undoable(self) -> bool:
        return self.undo_data is not None and self.undone_at is None


# ─── Recurring ────────────────────────────────────────────────────────────────


class RecurringTransaction(BaseModel):
    """A rule that the scheduler turns into an expense on each due date."""

    id: str
    envelope_id: str
    amount: Money = Field(..., gt=0)
    description: str = ""
    merchant: Optional[str] = None
    frequency: RecurringFrequency = "monthly"
    next_due_date: date
    # Day of month that month-based frequencies return to after a clamped month.
    anchor_day: Optional[int] = Field(default=None, ge=1, le=31)
    is_active: bool = True
    user_id: str = ""
    household_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def default_anchor_day(self) -> RecurringTransaction:
        if self.anchor_day is None:
            self.anchor_day = self.next_due_date.day
        return self
