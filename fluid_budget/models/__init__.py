"""
Data Models Package

This package contains all Pydantic models used by the budget engine.
All data flowing through the system must conform to these schemas.
"""

from fluid_budget.models.budget import (
    ActionResult,
    BudgetConfig,
    BudgetExpense,
    BudgetStatus,
    CarryOverMode,
    CycleInfo,
    CycleStatus,
    DailyRecord,
    DerivedBudgets,
    ExpenseChange,
    TodayBudget,
    WeekCycle,
    WeekCycleDates,
    WeekSummary,
)
from fluid_budget.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Budget models
    "ActionResult",
    "BudgetConfig",
    "BudgetExpense",
    "BudgetStatus",
    "CarryOverMode",
    "CycleInfo",
    "CycleStatus",
    "DailyRecord",
    "DerivedBudgets",
    "ExpenseChange",
    "TodayBudget",
    "WeekCycle",
    "WeekCycleDates",
    "WeekSummary",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
