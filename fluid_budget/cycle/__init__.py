"""Week cycle and daily record lifecycle."""

from fluid_budget.cycle.daily_records import DailyRecordManager
from fluid_budget.cycle.manager import BudgetOperationError, CycleManager

__all__ = ["BudgetOperationError", "CycleManager", "DailyRecordManager"]
