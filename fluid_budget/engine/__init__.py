"""Calculation engine package."""

from fluid_budget.engine.calculations import (
    BudgetValidationError,
    available_budget,
    budget_status,
    carry_over_balance,
    daily_balance,
    derived_budgets,
    format_date_to_string,
    get_today,
    parse_date_string,
    remaining_days,
    round_money,
    to_money,
    validate_daily_base,
    validate_expense_amount,
    validate_expense_date,
    week_cycle_dates,
)

__all__ = [
    "BudgetValidationError",
    "available_budget",
    "budget_status",
    "carry_over_balance",
    "daily_balance",
    "derived_budgets",
    "format_date_to_string",
    "get_today",
    "parse_date_string",
    "remaining_days",
    "round_money",
    "to_money",
    "validate_daily_base",
    "validate_expense_amount",
    "validate_expense_date",
    "week_cycle_dates",
]
