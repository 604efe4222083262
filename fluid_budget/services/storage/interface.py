"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the engine against SQLite, a hosted Postgres or anything else
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

CONTRACT: Unique constraints are the only concurrency control.
Implementations MUST enforce
    week_cycles    unique (account_id, start_date, end_date)
    daily_records  unique (account_id, record_date)
    budget_configs at most one active row per account
and MUST raise DuplicateError, and nothing else, when an insert hits one
of them. Callers treat DuplicateError as "another request won the race"
and re-read the row.

Lookups return None when nothing matches; that is never an error.
"""

from abc import ABC, abstractmethod
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
)
from fluid_budget.models.audit import AuditEvent


class BudgetStorageInterface(ABC):
    """
    Abstract interface for budget storage operations.

    Any storage implementation (SQLite, PostgreSQL, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_active_config(self, account_id: str) -> Optional[BudgetConfig]:
        """Return the account's active config, or None."""
        pass

    @abstractmethod
    async def insert_config(self, config: BudgetConfig) -> BudgetConfig:
        """
        Insert a new config.

        Raises:
            DuplicateError: If the account already has an active config
            StorageError: If the insert fails for any other reason
        """
        pass

    @abstractmethod
    async def update_config(self, config: BudgetConfig) -> BudgetConfig:
        """
        Overwrite an existing config.

        Raises:
            NotFoundError: If the config doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Week cycles
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_cycle(self, cycle_id: UUID) -> Optional[WeekCycle]:
        """Point lookup by ID."""
        pass

    @abstractmethod
    async def get_cycle_by_dates(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
    ) -> Optional[WeekCycle]:
        """Point lookup by the (account_id, start_date, end_date) unique key."""
        pass

    @abstractmethod
    async def find_active_cycle(
        self,
        account_id: str,
        reference_date: Optional[date] = None,
    ) -> Optional[WeekCycle]:
        """
        Return the account's active cycle.

        Args:
            account_id: Owning account
            reference_date: If given, only a cycle whose window contains
                            this date matches

        Returns:
            The active cycle, or None
        """
        pass

    @abstractmethod
    async def insert_cycle(self, cycle: WeekCycle) -> WeekCycle:
        """
        Insert a new cycle.

        Raises:
            DuplicateError: If (account_id, start_date, end_date) exists
            StorageError: If the insert fails for any other reason
        """
        pass

    @abstractmethod
    async def update_cycle_status(self, cycle_id: UUID, status: CycleStatus) -> WeekCycle:
        """
        Raises:
            NotFoundError: If the cycle doesn't exist
        """
        pass

    @abstractmethod
    async def update_cycle_balance(
        self,
        cycle_id: UUID,
        accumulated_balance: Decimal,
    ) -> WeekCycle:
        """
        Raises:
            NotFoundError: If the cycle doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Daily records
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_daily_record(
        self,
        account_id: str,
        record_date: date,
    ) -> Optional[DailyRecord]:
        """Point lookup by the (account_id, record_date) unique key."""
        pass

    @abstractmethod
    async def get_daily_record_by_id(self, record_id: UUID) -> Optional[DailyRecord]:
        pass

    @abstractmethod
    async def insert_daily_record(self, record: DailyRecord) -> DailyRecord:
        """
        Insert a new daily record.

        Raises:
            DuplicateError: If (account_id, record_date) exists
            StorageError: If the insert fails for any other reason
        """
        pass

    @abstractmethod
    async def update_daily_record_spent(
        self,
        record_id: UUID,
        total_spent: Decimal,
        daily_balance: Decimal,
    ) -> DailyRecord:
        """
        Set total_spent and daily_balance of one record.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def list_daily_records(self, cycle_id: UUID) -> list[DailyRecord]:
        """All records of a cycle, oldest first."""
        pass

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_expense(self, expense: BudgetExpense) -> BudgetExpense:
        pass

    @abstractmethod
    async def get_expense(self, account_id: str, expense_id: UUID) -> Optional[BudgetExpense]:
        pass

    @abstractmethod
    async def update_expense(self, expense: BudgetExpense) -> BudgetExpense:
        """
        Raises:
            NotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, account_id: str, expense_id: UUID) -> bool:
        """Returns True if a row was deleted."""
        pass

    @abstractmethod
    async def list_expenses(
        self,
        account_id: str,
        expense_date: Optional[date] = None,
    ) -> list[BudgetExpense]:
        """Expenses of an account, newest first, optionally for one date."""
        pass

    @abstractmethod
    async def sum_expenses_for_record(self, daily_record_id: UUID) -> Decimal:
        """Sum of amounts of the expenses linked to a daily record (0 if none)."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events of one request, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a row that violates a unique constraint."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
