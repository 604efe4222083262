"""
Core Data Models for Fluid Budget

These models define the strict schemas for the rows the budget engine
reads and writes, plus the response shapes handed to the UI layer.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Mirror the persisted column sets one-to-one

DESIGN DECISION: Money is Decimal everywhere. Formula results are
rounded to cents by the engine, so stored values never drift.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Generic, Optional, TypeVar
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class CarryOverMode(str, Enum):
    """
    What part of a finished cycle's balance seeds the next cycle.
    """
    RESET = "reset"                  # Nothing carries
    CARRY_ALL = "carry_all"          # Savings and debt both carry
    CARRY_DEFICIT = "carry_deficit"  # Only debt carries
    CARRY_CREDIT = "carry_credit"    # Only savings carry


class CycleStatus(str, Enum):
    """
    Week cycle lifecycle.

    A cycle is created ACTIVE and becomes CLOSED once "today" has moved
    past its end date. Closed is terminal for the row.
    """
    ACTIVE = "active"
    CLOSED = "closed"


class BudgetStatus(str, Enum):
    """Today's available budget compared with the daily base."""
    CRITICAL = "critical"        # Less than half the base
    BELOW_BASE = "below_base"
    AT_BASE = "at_base"
    ABOVE_BASE = "above_base"


# =============================================================================
# PERSISTED ROWS
# =============================================================================

class BudgetConfig(BaseModel):
    """
    Per-account budget configuration.

    Only one config per account is active at a time. Editing it never
    rewrites cycles that were already closed.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique config ID"
    )
    account_id: str = Field(
        ...,
        min_length=1,
        description="Owning account"
    )
    daily_base: Decimal = Field(
        ...,
        gt=0,
        description="Nominal amount allowed per day"
    )
    week_start_day: int = Field(
        default=1,
        ge=0,
        le=6,
        description="First day of the cycle (0=Sunday ... 6=Saturday)"
    )
    carry_over_mode: CarryOverMode = Field(
        default=CarryOverMode.CARRY_DEFICIT,
        description="Carry-over policy between cycles"
    )
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WeekCycle(BaseModel):
    """
    A 7-day budgeting window.

    INVARIANT: accumulated_balance == carried_balance + sum of the
    daily_balance of every DailyRecord in the cycle (after recalculation).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: str = Field(..., min_length=1)
    config_id: Optional[UUID] = Field(
        default=None,
        description="Config the cycle was opened with"
    )
    start_date: date
    end_date: date
    initial_budget: Decimal = Field(
        ...,
        description="Daily base x 7 at the time the cycle was opened"
    )
    carried_balance: Decimal = Field(
        default=Decimal("0"),
        description="Balance inherited from the previous cycle"
    )
    accumulated_balance: Decimal = Field(
        default=Decimal("0"),
        description="Carried balance plus all daily balances so far"
    )
    status: CycleStatus = CycleStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_window(self) -> 'WeekCycle':
        """A cycle always spans exactly seven calendar days."""
        if self.end_date != self.start_date + timedelta(days=6):
            raise ValueError("Week cycle must span exactly 7 days")
        return self

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def has_ended(self, today: date) -> bool:
        return today > self.end_date


class DailyRecord(BaseModel):
    """
    One row per account per calendar date.

    available_budget is fixed when the row is created; total_spent and
    daily_balance follow the day's expenses.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: str = Field(..., min_length=1)
    cycle_id: UUID
    record_date: date
    base_budget: Decimal
    available_budget: Decimal
    total_spent: Decimal = Decimal("0")
    daily_balance: Decimal
    remaining_days: int = Field(
        ...,
        ge=1,
        description="Days left in the cycle when the record was created, today included"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BudgetExpense(BaseModel):
    """A manually entered spend, attached to the record of its day."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: str = Field(..., min_length=1)
    daily_record_id: UUID
    user_id: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    category: str = Field(
        default="Other",
        min_length=1,
        max_length=100
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500
    )
    expense_date: date
    expense_time: Optional[time] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# VALUE OBJECTS
# =============================================================================

class WeekCycleDates(BaseModel):
    """Inclusive start/end of a cycle window."""
    start: date
    end: date


class DerivedBudgets(BaseModel):
    """Daily base projected onto longer periods."""
    daily: Decimal
    weekly: Decimal
    monthly: Decimal
    yearly: Decimal


# =============================================================================
# RESPONSE MODELS (for the UI/API layer)
# =============================================================================

class CycleInfo(BaseModel):
    id: UUID
    days_remaining: int
    accumulated_balance: Decimal
    week_start: date
    week_end: date


class TodayBudget(BaseModel):
    """What the "today" card shows."""
    budget_date: date
    available_budget: Decimal
    base_budget: Decimal
    adjustment: Decimal = Field(
        ...,
        description="available_budget - base_budget"
    )
    total_spent_today: Decimal
    remaining_today: Decimal
    manual_expenses: Decimal = Field(
        ...,
        description="Sum of the expenses attached to today's record"
    )
    cycle_info: CycleInfo
    status: BudgetStatus


class WeekSummary(BaseModel):
    cycle: WeekCycle
    daily_records: list[DailyRecord] = Field(default_factory=list)
    total_budget: Decimal
    total_spent: Decimal
    total_saved: Decimal
    average_daily_spent: Decimal
    days_over_budget: int = Field(ge=0)
    days_under_budget: int = Field(ge=0)


class ExpenseChange(BaseModel):
    """An expense mutation together with the budget it produced."""
    expense: BudgetExpense
    daily_record: DailyRecord
    accumulated_balance: Decimal


T = TypeVar("T")


class ActionResult(BaseModel, Generic[T]):
    """
    Envelope returned by the service layer.

    Failures carry a human-readable message instead of raising, so the
    UI can show it directly.
    """
    data: Optional[T] = None
    error: Optional[str] = None
    success: bool

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ActionResult[T]":
        return cls(data=data, error=None, success=True)

    @classmethod
    def fail(cls, error: str) -> "ActionResult[T]":
        return cls(data=None, error=error, success=False)
