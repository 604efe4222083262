"""
In-Memory Storage Implementation

Reference backend for tests and local runs. It enforces the same unique
constraints a relational store would, so the engine's
insert-then-refetch race handling behaves exactly as in production.

Every call first yields to the event loop. Two concurrent requests
therefore interleave between "look up" and "insert", which is the window
a real network round trip opens.

Rows are copied on the way in and out; callers never share state with
the store.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fluid_budget.models.budget import (
    BudgetConfig,
    BudgetExpense,
    CycleStatus,
    DailyRecord,
    WeekCycle,
    utcnow,
)
from fluid_budget.models.audit import AuditEvent
from fluid_budget.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    NotFoundError,
)


class InMemoryBudgetStorage(BudgetStorageInterface):
    """Dict-backed budget storage with unique-constraint checks."""

    def __init__(self, latency: float = 0.0):
        """
        Args:
            latency: Seconds each call sleeps before touching the data.
                     0 still yields once to the event loop.
        """
        self._latency = latency
        self._configs: dict[UUID, BudgetConfig] = {}
        self._cycles: dict[UUID, WeekCycle] = {}
        self._records: dict[UUID, DailyRecord] = {}
        self._expenses: dict[UUID, BudgetExpense] = {}

    async def _round_trip(self) -> None:
        await asyncio.sleep(self._latency)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    async def get_active_config(self, account_id: str) -> Optional[BudgetConfig]:
        await self._round_trip()
        for config in self._configs.values():
            if config.account_id == account_id and config.is_active:
                return config.model_copy(deep=True)
        return None

    async def insert_config(self, config: BudgetConfig) -> BudgetConfig:
        await self._round_trip()
        if config.is_active and any(
            c.account_id == config.account_id and c.is_active
            for c in self._configs.values()
        ):
            raise DuplicateError(f"Account {config.account_id} already has an active config")
        if config.id in self._configs:
            raise DuplicateError(f"Config already exists: {config.id}")
        self._configs[config.id] = config.model_copy(deep=True)
        return config.model_copy(deep=True)

    async def update_config(self, config: BudgetConfig) -> BudgetConfig:
        await self._round_trip()
        if config.id not in self._configs:
            raise NotFoundError(f"Config not found: {config.id}")
        stored = config.model_copy(update={"updated_at": utcnow()}, deep=True)
        self._configs[config.id] = stored
        return stored.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Week cycles
    # -------------------------------------------------------------------------

    async def get_cycle(self, cycle_id: UUID) -> Optional[WeekCycle]:
        await self._round_trip()
        cycle = self._cycles.get(cycle_id)
        return cycle.model_copy(deep=True) if cycle else None

    async def get_cycle_by_dates(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
    ) -> Optional[WeekCycle]:
        await self._round_trip()
        for cycle in self._cycles.values():
            if (
                cycle.account_id == account_id
                and cycle.start_date == start_date
                and cycle.end_date == end_date
            ):
                return cycle.model_copy(deep=True)
        return None

    async def find_active_cycle(
        self,
        account_id: str,
        reference_date: Optional[date] = None,
    ) -> Optional[WeekCycle]:
        await self._round_trip()
        for cycle in self._cycles.values():
            if cycle.account_id != account_id or cycle.status != CycleStatus.ACTIVE:
                continue
            if reference_date is not None and not cycle.contains(reference_date):
                continue
            return cycle.model_copy(deep=True)
        return None

    async def insert_cycle(self, cycle: WeekCycle) -> WeekCycle:
        await self._round_trip()
        for existing in self._cycles.values():
            if (
                existing.account_id == cycle.account_id
                and existing.start_date == cycle.start_date
                and existing.end_date == cycle.end_date
            ):
                raise DuplicateError(
                    f"Cycle {cycle.start_date}..{cycle.end_date} already exists "
                    f"for account {cycle.account_id}"
                )
        self._cycles[cycle.id] = cycle.model_copy(deep=True)
        return cycle.model_copy(deep=True)

    async def update_cycle_status(self, cycle_id: UUID, status: CycleStatus) -> WeekCycle:
        return await self._update_cycle(cycle_id, status=status)

    async def update_cycle_balance(
        self,
        cycle_id: UUID,
        accumulated_balance: Decimal,
    ) -> WeekCycle:
        return await self._update_cycle(cycle_id, accumulated_balance=accumulated_balance)

    async def _update_cycle(self, cycle_id: UUID, **changes) -> WeekCycle:
        await self._round_trip()
        cycle = self._cycles.get(cycle_id)
        if cycle is None:
            raise NotFoundError(f"Cycle not found: {cycle_id}")
        changes["updated_at"] = utcnow()
        updated = cycle.model_copy(update=changes)
        self._cycles[cycle_id] = updated
        return updated.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Daily records
    # -------------------------------------------------------------------------

    async def get_daily_record(
        self,
        account_id: str,
        record_date: date,
    ) -> Optional[DailyRecord]:
        await self._round_trip()
        for record in self._records.values():
            if record.account_id == account_id and record.record_date == record_date:
                return record.model_copy(deep=True)
        return None

    async def get_daily_record_by_id(self, record_id: UUID) -> Optional[DailyRecord]:
        await self._round_trip()
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def insert_daily_record(self, record: DailyRecord) -> DailyRecord:
        await self._round_trip()
        for existing in self._records.values():
            if (
                existing.account_id == record.account_id
                and existing.record_date == record.record_date
            ):
                raise DuplicateError(
                    f"Daily record for {record.record_date} already exists "
                    f"for account {record.account_id}"
                )
        self._records[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def update_daily_record_spent(
        self,
        record_id: UUID,
        total_spent: Decimal,
        daily_balance: Decimal,
    ) -> DailyRecord:
        await self._round_trip()
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"Daily record not found: {record_id}")
        updated = record.model_copy(update={
            "total_spent": total_spent,
            "daily_balance": daily_balance,
            "updated_at": utcnow(),
        })
        self._records[record_id] = updated
        return updated.model_copy(deep=True)

    async def list_daily_records(self, cycle_id: UUID) -> list[DailyRecord]:
        await self._round_trip()
        records = [r for r in self._records.values() if r.cycle_id == cycle_id]
        records.sort(key=lambda r: r.record_date)
        return [r.model_copy(deep=True) for r in records]

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def insert_expense(self, expense: BudgetExpense) -> BudgetExpense:
        await self._round_trip()
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense already exists: {expense.id}")
        self._expenses[expense.id] = expense.model_copy(deep=True)
        return expense.model_copy(deep=True)

    async def get_expense(self, account_id: str, expense_id: UUID) -> Optional[BudgetExpense]:
        await self._round_trip()
        expense = self._expenses.get(expense_id)
        if expense is None or expense.account_id != account_id:
            return None
        return expense.model_copy(deep=True)

    async def update_expense(self, expense: BudgetExpense) -> BudgetExpense:
        await self._round_trip()
        existing = self._expenses.get(expense.id)
        if existing is None or existing.account_id != expense.account_id:
            raise NotFoundError(f"Expense not found: {expense.id}")
        stored = expense.model_copy(update={"updated_at": utcnow()}, deep=True)
        self._expenses[expense.id] = stored
        return stored.model_copy(deep=True)

    async def delete_expense(self, account_id: str, expense_id: UUID) -> bool:
        await self._round_trip()
        expense = self._expenses.get(expense_id)
        if expense is None or expense.account_id != account_id:
            return False
        del self._expenses[expense_id]
        return True

    async def list_expenses(
        self,
        account_id: str,
        expense_date: Optional[date] = None,
    ) -> list[BudgetExpense]:
        await self._round_trip()
        expenses = [
            e for e in self._expenses.values()
            if e.account_id == account_id
            and (expense_date is None or e.expense_date == expense_date)
        ]
        expenses.sort(key=lambda e: e.created_at, reverse=True)
        return [e.model_copy(deep=True) for e in expenses]

    async def sum_expenses_for_record(self, daily_record_id: UUID) -> Decimal:
        await self._round_trip()
        return sum(
            (e.amount for e in self._expenses.values() if e.daily_record_id == daily_record_id),
            Decimal("0"),
        )


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
