"""
Daily Record Manager

One DailyRecord per account per date. The record is created on the
first access of the day and its available_budget is fixed at that
moment: later changes to the cycle balance move tomorrow's budget, not
today's.

Creation follows the same optimistic pattern as week cycles: insert,
and on a duplicate key adopt the row the other request wrote.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fluid_budget.cycle.manager import BudgetOperationError, StorageBackedManager
from fluid_budget.engine.calculations import (
    Money,
    available_budget,
    daily_balance,
    remaining_days,
    round_money,
)
from fluid_budget.models.budget import BudgetConfig, DailyRecord, WeekCycle
from fluid_budget.services.storage import DuplicateError, StorageError


class DailyRecordManager(StorageBackedManager):
    """Creates daily records and keeps their spent totals and the cycle balance in sync."""

    async def get_or_create_daily_record(
        self,
        account_id: str,
        cycle: WeekCycle,
        config: BudgetConfig,
        record_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> DailyRecord:
        """
        The record for record_date (default today), created from the
        cycle's current accumulated balance if it does not exist yet.
        """
        record_date = record_date or self._clock()

        try:
            existing = await self._storage.get_daily_record(account_id, record_date)
        except StorageError as e:
            await self._fail("look up daily record", e, account_id, correlation_id)
        if existing:
            return existing

        days_left = remaining_days(record_date, cycle.end_date)
        available = available_budget(config.daily_base, cycle.accumulated_balance, days_left)

        record = DailyRecord(
            account_id=account_id,
            cycle_id=cycle.id,
            record_date=record_date,
            base_budget=round_money(config.daily_base),
            available_budget=available,
            total_spent=Decimal("0"),
            daily_balance=available,
            remaining_days=days_left,
        )

        try:
            created = await self._storage.insert_daily_record(record)
        except DuplicateError:
            return await self._adopt_winner(account_id, record_date, correlation_id)
        except StorageError as e:
            await self._fail("create daily record", e, account_id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_daily_record_created(
                account_id=account_id,
                record_id=created.id,
                record_date=created.record_date,
                available_budget=created.available_budget,
                remaining_days=created.remaining_days,
                correlation_id=correlation_id,
            )
        return created

    async def _adopt_winner(
        self,
        account_id: str,
        record_date: date,
        correlation_id: Optional[UUID],
    ) -> DailyRecord:
        try:
            winner = await self._storage.get_daily_record(account_id, record_date)
        except StorageError as e:
            await self._fail("read daily record after conflict", e, account_id, correlation_id)
        if winner is None:
            raise BudgetOperationError(
                "read daily record after conflict",
                f"Daily record for {record_date} reported as duplicate but not found",
            )

        if self._audit_logger:
            await self._audit_logger.log_race_resolved(
                entity_type="daily_record",
                account_id=account_id,
                entity_id=winner.id,
                correlation_id=correlation_id,
            )
        return winner

    async def update_daily_record_spent(
        self,
        record_id: UUID,
        new_total_spent: Money,
        correlation_id: Optional[UUID] = None,
    ) -> DailyRecord:
        """Store a new spent total; the balance is recomputed from the fixed available budget."""
        try:
            current = await self._storage.get_daily_record_by_id(record_id)
        except StorageError as e:
            await self._fail("read daily record", e, correlation_id=correlation_id)
        if current is None:
            raise BudgetOperationError("update daily record", f"Daily record not found: {record_id}")

        spent = round_money(new_total_spent)
        balance = daily_balance(current.available_budget, spent)

        try:
            updated = await self._storage.update_daily_record_spent(record_id, spent, balance)
        except StorageError as e:
            await self._fail("update daily record", e, current.account_id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_daily_record_spent_updated(
                record_id=record_id,
                total_spent=spent,
                daily_balance=balance,
                correlation_id=correlation_id,
            )
        return updated

    async def recalculate_cycle_accumulated_balance(
        self,
        cycle_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """
        Rebuild the cycle balance from scratch:

            accumulated = carried_balance + sum(daily_balance of its records)

        Recomputing from the rows keeps the balance correct after any mix
        of adds, edits and deletes.
        """
        try:
            cycle = await self._storage.get_cycle(cycle_id)
            records = await self._storage.list_daily_records(cycle_id)
        except StorageError as e:
            await self._fail("read cycle records", e, correlation_id=correlation_id)
        if cycle is None:
            raise BudgetOperationError("recalculate cycle balance", f"Cycle not found: {cycle_id}")

        total = round_money(
            cycle.carried_balance + sum((r.daily_balance for r in records), Decimal("0"))
        )

        try:
            await self._storage.update_cycle_balance(cycle_id, total)
        except StorageError as e:
            await self._fail("update cycle balance", e, cycle.account_id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_cycle_balance_recalculated(
                cycle_id=cycle_id,
                accumulated_balance=total,
                record_count=len(records),
                correlation_id=correlation_id,
            )
        return total

    async def get_total_expenses_for_record(
        self,
        record_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        try:
            total = await self._storage.sum_expenses_for_record(record_id)
        except StorageError as e:
            await self._fail("sum expenses", e, correlation_id=correlation_id)
        return round_money(total)

    async def get_daily_records_for_cycle(
        self,
        cycle_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> list[DailyRecord]:
        """Records of the cycle, oldest first."""
        try:
            return await self._storage.list_daily_records(cycle_id)
        except StorageError as e:
            await self._fail("list daily records", e, correlation_id=correlation_id)

    async def sync_record_with_expenses(
        self,
        record_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[DailyRecord, Decimal]:
        """
        After an expense change: re-sum the record's expenses, store the
        new total, and rebuild the cycle balance.

        Returns the updated record and the new accumulated balance.
        """
        total = await self.get_total_expenses_for_record(record_id, correlation_id)
        record = await self.update_daily_record_spent(record_id, total, correlation_id)
        balance = await self.recalculate_cycle_accumulated_balance(record.cycle_id, correlation_id)
        return record, balance
