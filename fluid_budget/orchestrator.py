"""
Main Orchestrator for Fluid Budget

This module ties together the engine, the cycle managers and storage,
and defines the end-to-end flows behind the budget screen:
1. Configure (validate -> upsert active config)
2. Today (ensure cycle -> ensure today's record -> report)
3. Expenses (validate -> attach to the day's record -> re-sum ->
   recompute cycle balance)
4. Week summary

DESIGN DECISION: The orchestrator never raises to its caller. Every
flow returns an ActionResult:
- Validation problems come back with the validation message
- A missing config comes back as "Budget configuration not found"
- Persistence failures are audited and come back as a generic message

Every step that changes state is audited under one correlation id per
call.
"""

from datetime import date, time
from decimal import Decimal
from typing import Callable, Optional, Union
from uuid import UUID

from pydantic import ValidationError

from fluid_budget.audit import AuditLogger, configure_logging, create_correlation_id
from fluid_budget.config import BudgetSettings, get_settings
from fluid_budget.cycle import BudgetOperationError, CycleManager, DailyRecordManager
from fluid_budget.engine.calculations import (
    BudgetValidationError,
    Money,
    budget_status,
    get_today,
    parse_date_string,
    remaining_days,
    round_money,
    validate_daily_base,
    validate_expense_amount,
    validate_expense_date,
)
from fluid_budget.models.audit import AuditEventType
from fluid_budget.models.budget import (
    ActionResult,
    BudgetConfig,
    BudgetExpense,
    CarryOverMode,
    CycleInfo,
    ExpenseChange,
    TodayBudget,
    WeekCycle,
    WeekSummary,
)
from fluid_budget.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    SQLiteAuditStorage,
    SQLiteBudgetStorage,
    SQLiteClient,
    StorageError,
)


CONFIG_NOT_FOUND = "Budget configuration not found"
EXPENSE_NOT_FOUND = "Expense not found"


class BudgetService:
    """
    Budget actions for one storage backend.

    Flow for an expense:
    1. Validate amount
    2. Load active config (fail if missing)
    3. Ensure the active cycle (may roll the week over)
    4. Check the expense date lies inside the cycle
    5. Get or create the day's record
    6. Insert expense, re-sum the record, recompute the cycle balance
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[BudgetSettings] = None,
        clock: Callable[[], date] = get_today,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().budget
        self._clock = clock
        self._cycles = CycleManager(storage, audit_logger, clock)
        self._records = DailyRecordManager(storage, audit_logger, clock)

    # -------------------------------------------------------------------------
    # Failure handling
    # -------------------------------------------------------------------------

    async def _rejected(
        self,
        error: BudgetValidationError,
        account_id: str,
        correlation_id: UUID,
    ) -> ActionResult:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                field=error.field,
                message=error.message,
                account_id=account_id,
                correlation_id=correlation_id,
            )
        return ActionResult.fail(error.message)

    async def _failed(
        self,
        operation: str,
        error: Exception,
        account_id: str,
        correlation_id: UUID,
    ) -> ActionResult:
        # Managers audit the storage errors they wrap
        if self._audit_logger and not isinstance(error, BudgetOperationError):
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(error),
                account_id=account_id,
                correlation_id=correlation_id,
            )
        return ActionResult.fail(f"Could not complete operation: {operation}")

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    async def upsert_budget_config(
        self,
        account_id: str,
        daily_base: Money,
        week_start_day: Optional[int] = None,
        carry_over_mode: Optional[Union[CarryOverMode, str]] = None,
    ) -> ActionResult[BudgetConfig]:
        """
        Update the account's active config, or create it.

        Omitted fields keep their current value on update and take the
        configured defaults on create.
        """
        correlation_id = create_correlation_id()
        try:
            base = validate_daily_base(daily_base, self._settings.max_daily_base)
            if week_start_day is not None and not 0 <= week_start_day <= 6:
                raise BudgetValidationError(
                    "week_start_day",
                    f"Week start day must be between 0 and 6, got {week_start_day}",
                )
            mode = _parse_carry_over_mode(carry_over_mode)

            existing = await self._storage.get_active_config(account_id)
            if existing:
                saved = await self._storage.update_config(
                    _merge_config(existing, base, week_start_day, mode)
                )
                created = False
            else:
                config = BudgetConfig(
                    account_id=account_id,
                    daily_base=base,
                    week_start_day=(
                        week_start_day if week_start_day is not None
                        else self._settings.default_week_start_day
                    ),
                    carry_over_mode=mode or self._settings.default_carry_over_mode,
                )
                try:
                    saved = await self._storage.insert_config(config)
                    created = True
                except DuplicateError:
                    # Created concurrently; apply our values to that row
                    winner = await self._storage.get_active_config(account_id)
                    if winner is None:
                        raise BudgetOperationError(
                            "save budget config",
                            f"Active config for {account_id} reported as duplicate but not found",
                        )
                    saved = await self._storage.update_config(
                        _merge_config(winner, base, week_start_day, mode)
                    )
                    created = False
        except BudgetValidationError as e:
            return await self._rejected(e, account_id, correlation_id)
        except ValidationError as e:
            return await self._rejected(_from_pydantic(e), account_id, correlation_id)
        except (StorageError, BudgetOperationError) as e:
            return await self._failed("save budget config", e, account_id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_config_saved(
                account_id=account_id,
                config_id=saved.id,
                daily_base=saved.daily_base,
                created=created,
                correlation_id=correlation_id,
            )
        return ActionResult.ok(saved)

    async def get_active_budget_config(self, account_id: str) -> ActionResult[BudgetConfig]:
        """Data is None when the account has no config yet; that is not a failure."""
        correlation_id = create_correlation_id()
        try:
            config = await self._storage.get_active_config(account_id)
        except StorageError as e:
            return await self._failed("load budget config", e, account_id, correlation_id)
        return ActionResult.ok(config)

    # -------------------------------------------------------------------------
    # Today
    # -------------------------------------------------------------------------

    async def get_today_budget(self, account_id: str) -> ActionResult[TodayBudget]:
        correlation_id = create_correlation_id()
        try:
            config = await self._storage.get_active_config(account_id)
            if config is None:
                return ActionResult.fail(CONFIG_NOT_FOUND)

            today = self._clock()
            cycle = await self._cycles.ensure_active_cycle(account_id, config, correlation_id)
            record = await self._records.get_or_create_daily_record(
                account_id, cycle, config, today, correlation_id
            )
            manual = await self._records.get_total_expenses_for_record(record.id, correlation_id)
        except (StorageError, BudgetOperationError) as e:
            return await self._failed("load today's budget", e, account_id, correlation_id)

        return ActionResult.ok(TodayBudget(
            budget_date=record.record_date,
            available_budget=record.available_budget,
            base_budget=record.base_budget,
            adjustment=round_money(record.available_budget - record.base_budget),
            total_spent_today=record.total_spent,
            remaining_today=record.daily_balance,
            manual_expenses=manual,
            cycle_info=CycleInfo(
                id=cycle.id,
                days_remaining=remaining_days(today, cycle.end_date),
                accumulated_balance=cycle.accumulated_balance,
                week_start=cycle.start_date,
                week_end=cycle.end_date,
            ),
            status=budget_status(record.available_budget, config.daily_base),
        ))

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def add_expense(
        self,
        account_id: str,
        amount: Money,
        category: Optional[str] = None,
        description: Optional[str] = None,
        expense_date: Optional[Union[date, str]] = None,
        expense_time: Optional[time] = None,
        user_id: Optional[str] = None,
    ) -> ActionResult[ExpenseChange]:
        """
        Record a manual expense and rebalance the cycle.

        expense_date defaults to today and must fall inside the active
        cycle.
        """
        correlation_id = create_correlation_id()
        try:
            value = round_money(validate_expense_amount(amount, self._settings.max_expense_amount))
            day = _coerce_date(expense_date) or self._clock()

            config = await self._storage.get_active_config(account_id)
            if config is None:
                return ActionResult.fail(CONFIG_NOT_FOUND)

            cycle = await self._cycles.ensure_active_cycle(account_id, config, correlation_id)
            validate_expense_date(day, cycle.start_date, cycle.end_date)

            record = await self._records.get_or_create_daily_record(
                account_id, cycle, config, day, correlation_id
            )
            expense = BudgetExpense(
                account_id=account_id,
                daily_record_id=record.id,
                user_id=user_id,
                amount=value,
                category=category or self._settings.default_expense_category,
                description=description,
                expense_date=day,
                expense_time=expense_time,
            )
            expense = await self._storage.insert_expense(expense)
            record, balance = await self._records.sync_record_with_expenses(
                record.id, correlation_id
            )
        except BudgetValidationError as e:
            return await self._rejected(e, account_id, correlation_id)
        except ValidationError as e:
            return await self._rejected(_from_pydantic(e), account_id, correlation_id)
        except (StorageError, BudgetOperationError) as e:
            return await self._failed("add expense", e, account_id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_expense_changed(
                event_type=AuditEventType.EXPENSE_ADDED,
                account_id=account_id,
                expense_id=expense.id,
                amount=expense.amount,
                correlation_id=correlation_id,
            )
        return ActionResult.ok(ExpenseChange(
            expense=expense,
            daily_record=record,
            accumulated_balance=balance,
        ))

    async def update_expense(
        self,
        account_id: str,
        expense_id: UUID,
        amount: Optional[Money] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ActionResult[ExpenseChange]:
        """Change amount, category or description; None leaves a field as is."""
        correlation_id = create_correlation_id()
        try:
            changes = {}
            if amount is not None:
                changes["amount"] = round_money(
                    validate_expense_amount(amount, self._settings.max_expense_amount)
                )
            if category is not None:
                changes["category"] = category
            if description is not None:
                changes["description"] = description

            existing = await self._storage.get_expense(account_id, expense_id)
            if existing is None:
                return ActionResult.fail(EXPENSE_NOT_FOUND)

            updated = BudgetExpense.model_validate({**existing.model_dump(), **changes})
            stored = await self._storage.update_expense(updated)
            record, balance = await self._records.sync_record_with_expenses(
                existing.daily_record_id, correlation_id
            )
        except BudgetValidationError as e:
            return await self._rejected(e, account_id, correlation_id)
        except ValidationError as e:
            return await self._rejected(_from_pydantic(e), account_id, correlation_id)
        except (StorageError, BudgetOperationError) as e:
            return await self._failed("update expense", e, account_id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_expense_changed(
                event_type=AuditEventType.EXPENSE_UPDATED,
                account_id=account_id,
                expense_id=stored.id,
                amount=stored.amount,
                correlation_id=correlation_id,
            )
        return ActionResult.ok(ExpenseChange(
            expense=stored,
            daily_record=record,
            accumulated_balance=balance,
        ))

    async def delete_expense(
        self,
        account_id: str,
        expense_id: UUID,
    ) -> ActionResult[ExpenseChange]:
        """Remove an expense; the returned change carries the deleted row."""
        correlation_id = create_correlation_id()
        try:
            existing = await self._storage.get_expense(account_id, expense_id)
            if existing is None:
                return ActionResult.fail(EXPENSE_NOT_FOUND)

            if not await self._storage.delete_expense(account_id, expense_id):
                return ActionResult.fail(EXPENSE_NOT_FOUND)

            record, balance = await self._records.sync_record_with_expenses(
                existing.daily_record_id, correlation_id
            )
        except (StorageError, BudgetOperationError) as e:
            return await self._failed("delete expense", e, account_id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_expense_changed(
                event_type=AuditEventType.EXPENSE_DELETED,
                account_id=account_id,
                expense_id=existing.id,
                amount=existing.amount,
                correlation_id=correlation_id,
            )
        return ActionResult.ok(ExpenseChange(
            expense=existing,
            daily_record=record,
            accumulated_balance=balance,
        ))

    async def get_expenses_for_date(
        self,
        account_id: str,
        expense_date: Union[date, str],
    ) -> ActionResult[list[BudgetExpense]]:
        """Expenses of one day, newest first."""
        correlation_id = create_correlation_id()
        try:
            day = _coerce_date(expense_date)
            expenses = await self._storage.list_expenses(account_id, day)
        except BudgetValidationError as e:
            return await self._rejected(e, account_id, correlation_id)
        except StorageError as e:
            return await self._failed("list expenses", e, account_id, correlation_id)
        return ActionResult.ok(expenses)

    # -------------------------------------------------------------------------
    # Cycle views
    # -------------------------------------------------------------------------

    async def get_current_cycle(self, account_id: str) -> ActionResult[WeekCycle]:
        correlation_id = create_correlation_id()
        try:
            config = await self._storage.get_active_config(account_id)
            if config is None:
                return ActionResult.fail(CONFIG_NOT_FOUND)
            cycle = await self._cycles.ensure_active_cycle(account_id, config, correlation_id)
        except (StorageError, BudgetOperationError) as e:
            return await self._failed("load current cycle", e, account_id, correlation_id)
        return ActionResult.ok(cycle)

    async def get_week_summary(self, account_id: str) -> ActionResult[WeekSummary]:
        """
        Totals for the active cycle.

        total_saved is the cycle's initial budget minus what was spent;
        the daily average is taken over the days that have a record.
        """
        correlation_id = create_correlation_id()
        try:
            config = await self._storage.get_active_config(account_id)
            if config is None:
                return ActionResult.fail(CONFIG_NOT_FOUND)
            cycle = await self._cycles.ensure_active_cycle(account_id, config, correlation_id)
            records = await self._records.get_daily_records_for_cycle(cycle.id, correlation_id)
        except (StorageError, BudgetOperationError) as e:
            return await self._failed("load week summary", e, account_id, correlation_id)

        total_spent = sum((r.total_spent for r in records), Decimal("0"))
        days_with_records = len(records) or 1

        return ActionResult.ok(WeekSummary(
            cycle=cycle,
            daily_records=records,
            total_budget=cycle.initial_budget,
            total_spent=round_money(total_spent),
            total_saved=round_money(cycle.initial_budget - total_spent),
            average_daily_spent=round_money(total_spent / days_with_records),
            days_over_budget=sum(1 for r in records if r.total_spent > r.available_budget),
            days_under_budget=sum(1 for r in records if r.total_spent < r.available_budget),
        ))


# =============================================================================
# HELPERS
# =============================================================================

def _parse_carry_over_mode(
    value: Optional[Union[CarryOverMode, str]],
) -> Optional[CarryOverMode]:
    if value is None:
        return None
    try:
        return CarryOverMode(value)
    except ValueError:
        raise BudgetValidationError("carry_over_mode", f"Unknown carry-over mode: {value}")


def _merge_config(
    config: BudgetConfig,
    daily_base: Decimal,
    week_start_day: Optional[int],
    carry_over_mode: Optional[CarryOverMode],
) -> BudgetConfig:
    changes = {"daily_base": daily_base}
    if week_start_day is not None:
        changes["week_start_day"] = week_start_day
    if carry_over_mode is not None:
        changes["carry_over_mode"] = carry_over_mode
    return config.model_copy(update=changes)


def _coerce_date(value: Optional[Union[date, str]]) -> Optional[date]:
    if isinstance(value, str):
        return parse_date_string(value)
    return value


def _from_pydantic(error: ValidationError) -> BudgetValidationError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "expense"
    return BudgetValidationError(field, f"Invalid {field}: {first['msg']}")


# =============================================================================
# FACTORY
# =============================================================================

def create_budget_service(
    storage: Optional[BudgetStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> BudgetService:
    """
    Factory function to create a fully wired BudgetService.

    Args:
        storage: Budget storage to use. When omitted the backend named by
                 BUDGET_STORAGE_BACKEND is built ('memory' or 'sqlite').
        audit_storage: Where audit events are persisted. Defaults to the
                       same backend as storage.

    Returns:
        BudgetService with audit logging enabled
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    if storage is None:
        storage_settings = settings.storage
        if storage_settings.backend == "sqlite":
            client = SQLiteClient(storage_settings)
            client.init_schema()
            storage = SQLiteBudgetStorage(client)
            audit_storage = audit_storage or SQLiteAuditStorage(client)
        else:
            storage = InMemoryBudgetStorage()
            audit_storage = audit_storage or InMemoryAuditStorage()

    return BudgetService(
        storage=storage,
        audit_logger=AuditLogger(audit_storage),
        settings=settings.budget,
    )
