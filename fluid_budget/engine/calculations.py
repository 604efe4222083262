"""
Rolling Budget Calculations

Pure functions behind the fluid daily budget. No I/O, no settings
lookups: every limit arrives as an argument.

Main formula:
    available_budget = daily_base + accumulated_balance / remaining_days

A saving or an overspend is spread evenly over the days left in the
cycle instead of landing on the next day alone.

DESIGN DECISION: Money is Decimal and every formula result is rounded to
cents with ROUND_HALF_UP (half away from zero). Floats are converted via
str() so 0.1 stays 0.1.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from fluid_budget.models.budget import (
    BudgetStatus,
    CarryOverMode,
    DerivedBudgets,
    WeekCycleDates,
)

Money = Union[Decimal, int, float]
DateLike = Union[date, datetime]

CENT = Decimal("0.01")
MAX_DAILY_BASE = Decimal("100000")
MAX_EXPENSE_AMOUNT = Decimal("1000000")


class BudgetValidationError(ValueError):
    """
    Input rejected before any write.

    Always recoverable: the caller fixes the value and retries.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(message)


# =============================================================================
# MONEY AND DATE HELPERS
# =============================================================================

def to_money(value: Money) -> Decimal:
    """Convert a numeric value to Decimal without float artefacts."""
    if isinstance(value, bool):
        raise TypeError("Boolean is not a monetary value")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            raise TypeError(f"Not a monetary value: {value!r}")
    raise TypeError(f"Not a monetary value: {value!r}")


def round_money(value: Money) -> Decimal:
    """Round to cents, half away from zero."""
    return to_money(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _as_date(value: DateLike) -> date:
    # datetime is a date subclass, so check it first
    if isinstance(value, datetime):
        return value.date()
    return value


def get_today() -> date:
    return date.today()


def format_date_to_string(value: DateLike) -> str:
    """Format as YYYY-MM-DD, the persisted date format. Years are zero-padded."""
    return _as_date(value).isoformat()


def parse_date_string(value: str) -> date:
    """Parse a YYYY-MM-DD string."""
    try:
        text = value.strip()
        # fromisoformat also takes basic and week forms; only YYYY-MM-DD is persisted
        if len(text) != 10 or text[4] != "-" or text[7] != "-":
            raise ValueError(text)
        return date.fromisoformat(text)
    except (AttributeError, ValueError):
        raise BudgetValidationError("date", f"Invalid date (expected YYYY-MM-DD): {value!r}")


def sunday_first_weekday(value: DateLike) -> int:
    """Weekday in the persisted numbering: 0=Sunday ... 6=Saturday."""
    return _as_date(value).isoweekday() % 7


# =============================================================================
# CORE FORMULAS
# =============================================================================

def available_budget(
    daily_base: Money,
    accumulated_balance: Money,
    remaining_days: int,
) -> Decimal:
    """
    Budget available for a day.

    Examples:
        available_budget(100, 20, 5)   -> 104.00
        available_budget(100, -50, 5)  -> 90.00
        available_budget(100, 20, 6)   -> 103.33
    """
    base = to_money(daily_base)
    if remaining_days <= 0:
        return round_money(base)

    adjustment = to_money(accumulated_balance) / Decimal(remaining_days)
    return round_money(base + adjustment)


def daily_balance(available: Money, total_spent: Money) -> Decimal:
    """Positive means saved, negative means overspent."""
    return round_money(to_money(available) - to_money(total_spent))


def remaining_days(current: DateLike, cycle_end: DateLike) -> int:
    """
    Days left in the cycle, today included. Never less than 1.
    """
    diff = (_as_date(cycle_end) - _as_date(current)).days
    return max(1, diff + 1)


def week_cycle_dates(reference: DateLike, week_start_day: int) -> WeekCycleDates:
    """
    The 7-day window containing reference.

    start is the latest date on or before reference whose weekday is
    week_start_day (0=Sunday ... 6=Saturday); end is six days later.
    """
    if not 0 <= week_start_day <= 6:
        raise BudgetValidationError(
            "week_start_day",
            f"Week start day must be between 0 and 6, got {week_start_day}",
        )

    current = _as_date(reference)
    days_back = (sunday_first_weekday(current) - week_start_day) % 7
    try:
        start = current - timedelta(days=days_back)
        return WeekCycleDates(start=start, end=start + timedelta(days=6))
    except OverflowError:
        raise BudgetValidationError(
            "reference",
            f"No full week around {current.isoformat()} fits the calendar",
        )


def budget_status(available: Money, daily_base: Money) -> BudgetStatus:
    """
    Classify available budget against the base.

    ratio < 0.5 is critical, < 1 below base, == 1 at base, > 1 above.
    """
    base = to_money(daily_base)
    if base <= 0:
        return BudgetStatus.AT_BASE

    ratio = to_money(available) / base
    if ratio < Decimal("0.5"):
        return BudgetStatus.CRITICAL
    if ratio < 1:
        return BudgetStatus.BELOW_BASE
    if ratio > 1:
        return BudgetStatus.ABOVE_BASE
    return BudgetStatus.AT_BASE


def derived_budgets(
    daily_base: Money,
    month: Optional[int] = None,
    year: Optional[int] = None,
) -> DerivedBudgets:
    """
    Project the daily base onto week, month and year.

    month is 0-based (0=January). Without month and year the month is
    30 days and the year 365; with them the real calendar is used.
    """
    base = to_money(daily_base)
    days_in_month = 30
    days_in_year = 365

    if year is not None:
        days_in_year = 366 if calendar.isleap(year) else 365
        if month is not None:
            if not 0 <= month <= 11:
                raise BudgetValidationError("month", f"Month must be between 0 and 11, got {month}")
            days_in_month = calendar.monthrange(year, month + 1)[1]

    return DerivedBudgets(
        daily=base,
        weekly=round_money(base * 7),
        monthly=round_money(base * days_in_month),
        yearly=round_money(base * days_in_year),
    )


def carry_over_balance(
    accumulated_balance: Money,
    mode: Union[CarryOverMode, str],
) -> Decimal:
    """
    Balance that seeds the next cycle.

        reset          -> 0
        carry_all      -> unchanged
        carry_deficit  -> only a negative balance carries
        carry_credit   -> only a positive balance carries
    """
    balance = to_money(accumulated_balance)
    mode = CarryOverMode(mode)

    if mode == CarryOverMode.CARRY_ALL:
        return balance
    if mode == CarryOverMode.CARRY_DEFICIT:
        return min(Decimal("0"), balance)
    if mode == CarryOverMode.CARRY_CREDIT:
        return max(Decimal("0"), balance)
    return Decimal("0")


# =============================================================================
# VALIDATION
# =============================================================================

def _finite_money(value: Money, field: str, label: str) -> Decimal:
    try:
        amount = to_money(value)
    except TypeError:
        raise BudgetValidationError(field, f"{label} must be a valid number")
    if not amount.is_finite():
        raise BudgetValidationError(field, f"{label} must be a valid number")
    return amount


def validate_daily_base(value: Money, max_value: Money = MAX_DAILY_BASE) -> Decimal:
    """Return the daily base as Decimal, or raise BudgetValidationError."""
    amount = _finite_money(value, "daily_base", "Daily base")
    if amount <= 0:
        raise BudgetValidationError("daily_base", "Daily base must be positive")
    limit = to_money(max_value)
    if amount > limit:
        raise BudgetValidationError("daily_base", f"Daily base too high (maximum {limit:,})")
    return amount


def validate_expense_amount(value: Money, max_value: Money = MAX_EXPENSE_AMOUNT) -> Decimal:
    """Return the expense amount as Decimal, or raise BudgetValidationError."""
    amount = _finite_money(value, "amount", "Expense amount")
    if amount <= 0:
        raise BudgetValidationError("amount", "Expense amount must be positive")
    limit = to_money(max_value)
    if amount > limit:
        raise BudgetValidationError("amount", f"Expense amount too high (maximum {limit:,})")
    return amount


def validate_expense_date(
    expense_date: DateLike,
    cycle_start: DateLike,
    cycle_end: DateLike,
) -> None:
    """The expense must fall inside the cycle, both ends inclusive."""
    day = _as_date(expense_date)
    if day < _as_date(cycle_start) or day > _as_date(cycle_end):
        raise BudgetValidationError(
            "expense_date",
            f"Expense date {format_date_to_string(day)} is outside the current cycle",
        )
