"""
Week Cycle Manager

Lifecycle of WeekCycle rows:

    none --create--> active --today passes end_date--> closed
                                                       + new active

A closed row is terminal, but the account never is: the next access
after a cycle expires closes it and opens the successor, seeding it with
the carry-over balance the config's mode allows.

DESIGN DECISION: Transitions are lazy. There is no scheduler; an
untouched account keeps a stale active cycle until its next request.

CONCURRENCY: Creation is optimistic. We insert, and if the store reports
a duplicate key another request got there first, so we read its row once
and adopt it. No locks, no retries.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, NoReturn, Optional
from uuid import UUID

from fluid_budget.audit import AuditLogger
from fluid_budget.engine.calculations import (
    Money,
    carry_over_balance,
    get_today,
    round_money,
    week_cycle_dates,
)
from fluid_budget.models.budget import BudgetConfig, CycleStatus, WeekCycle
from fluid_budget.services.storage import (
    BudgetStorageInterface,
    DuplicateError,
    StorageError,
)


class BudgetOperationError(Exception):
    """
    A persistence call failed for a reason other than the expected
    duplicate-key race. Fatal to the current request.
    """

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(message)


class StorageBackedManager:
    """Shared plumbing: storage handle, audit logger, clock, error wrapping."""

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], date] = get_today,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._clock = clock

    async def _fail(
        self,
        operation: str,
        error: Exception,
        account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> NoReturn:
        if self._audit_logger:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(error),
                account_id=account_id,
                correlation_id=correlation_id,
            )
        raise BudgetOperationError(operation, f"Failed to {operation}: {error}") from error


class CycleManager(StorageBackedManager):
    """
    Keeps exactly one active week cycle per account.

    ensure_active_cycle() is the entry point; it is idempotent and safe
    to call on every request.
    """

    async def get_active_cycle(
        self,
        account_id: str,
        reference_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[WeekCycle]:
        """
        Active cycle whose window contains reference_date (default today).

        Returns None when there is none; that is not an error.
        """
        reference_date = reference_date or self._clock()
        try:
            return await self._storage.find_active_cycle(account_id, reference_date)
        except StorageError as e:
            await self._fail("get active cycle", e, account_id, correlation_id)

    async def create_new_cycle(
        self,
        account_id: str,
        config: BudgetConfig,
        reference_date: Optional[date] = None,
        carried_balance: Money = Decimal("0"),
        correlation_id: Optional[UUID] = None,
    ) -> WeekCycle:
        """
        Open the cycle whose window contains reference_date.

        If the row already exists (or appears while we insert it) that
        row is returned instead, so concurrent callers all end up with
        the same cycle.
        """
        reference_date = reference_date or self._clock()
        window = week_cycle_dates(reference_date, config.week_start_day)

        try:
            existing = await self._storage.get_cycle_by_dates(account_id, window.start, window.end)
        except StorageError as e:
            await self._fail("look up week cycle", e, account_id, correlation_id)
        if existing:
            return existing

        carried = round_money(carried_balance)
        cycle = WeekCycle(
            account_id=account_id,
            config_id=config.id,
            start_date=window.start,
            end_date=window.end,
            initial_budget=round_money(config.daily_base * 7),
            carried_balance=carried,
            accumulated_balance=carried,
            status=CycleStatus.ACTIVE,
        )

        try:
            created = await self._storage.insert_cycle(cycle)
        except DuplicateError:
            return await self._adopt_winner(account_id, window.start, window.end, correlation_id)
        except StorageError as e:
            await self._fail("create week cycle", e, account_id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_cycle_created(
                account_id=account_id,
                cycle_id=created.id,
                start_date=created.start_date,
                end_date=created.end_date,
                carried_balance=created.carried_balance,
                correlation_id=correlation_id,
            )
        return created

    async def _adopt_winner(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
        correlation_id: Optional[UUID],
    ) -> WeekCycle:
        try:
            winner = await self._storage.get_cycle_by_dates(account_id, start_date, end_date)
        except StorageError as e:
            await self._fail("read week cycle after conflict", e, account_id, correlation_id)
        if winner is None:
            raise BudgetOperationError(
                "read week cycle after conflict",
                f"Week cycle {start_date}..{end_date} reported as duplicate but not found",
            )

        if self._audit_logger:
            await self._audit_logger.log_race_resolved(
                entity_type="cycle",
                account_id=account_id,
                entity_id=winner.id,
                correlation_id=correlation_id,
            )
        return winner

    async def close_cycle(
        self,
        cycle_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> WeekCycle:
        try:
            return await self._storage.update_cycle_status(cycle_id, CycleStatus.CLOSED)
        except StorageError as e:
            await self._fail("close week cycle", e, correlation_id=correlation_id)

    async def handle_cycle_transition(
        self,
        account_id: str,
        config: BudgetConfig,
        correlation_id: Optional[UUID] = None,
    ) -> WeekCycle:
        """
        Resolve the account's active cycle against today.

        - Expired active cycle: close it, carry its balance per the
          config's mode, open the cycle containing today.
        - Current active cycle: returned unchanged.
        - No active cycle: open one with nothing carried.

        The close and the open are separate writes. If the open fails
        after the close, the account has no active cycle and the next
        call opens one with nothing carried, so the carry-over is lost.
        """
        today = self._clock()

        try:
            current = await self._storage.find_active_cycle(account_id)
        except StorageError as e:
            await self._fail("get active cycle", e, account_id, correlation_id)

        if current is None:
            return await self.create_new_cycle(
                account_id, config, today, Decimal("0"), correlation_id
            )

        if not current.has_ended(today):
            return current

        await self.close_cycle(current.id, correlation_id)
        carried = carry_over_balance(current.accumulated_balance, config.carry_over_mode)

        if self._audit_logger:
            await self._audit_logger.log_cycle_closed(
                account_id=account_id,
                cycle_id=current.id,
                final_balance=current.accumulated_balance,
                carried_balance=carried,
                correlation_id=correlation_id,
            )

        return await self.create_new_cycle(account_id, config, today, carried, correlation_id)

    async def ensure_active_cycle(
        self,
        account_id: str,
        config: BudgetConfig,
        correlation_id: Optional[UUID] = None,
    ) -> WeekCycle:
        """The active cycle for today, creating or rolling over as needed."""
        active = await self.get_active_cycle(account_id, self._clock(), correlation_id)
        if active:
            return active
        return await self.handle_cycle_transition(account_id, config, correlation_id)
