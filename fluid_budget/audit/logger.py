"""
Audit Logger

DESIGN DECISION: Every state change of the budget engine is logged.
This provides:
1. Traceability of cycle transitions and carried balances
2. Evidence of creation races and how they were resolved
3. Context for persistence failures

The audit logger:
- Is async so it fits the storage call chain
- Gracefully handles failures (a failed audit write never breaks a request)
- Supports correlation IDs to trace the events of one request
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from fluid_budget.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from fluid_budget.services.storage import AuditStorageInterface, StorageError


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    logging.getLogger("fluid_budget").setLevel(level.upper())


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("fluid_budget.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except StorageError as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_config_saved(
        self,
        account_id: str,
        config_id: UUID,
        daily_base: Decimal,
        created: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.config_saved(
            account_id=account_id,
            config_id=config_id,
            daily_base=daily_base,
            created=created,
            correlation_id=correlation_id,
        ))

    async def log_cycle_created(
        self,
        account_id: str,
        cycle_id: UUID,
        start_date: date,
        end_date: date,
        carried_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cycle_created(
            account_id=account_id,
            cycle_id=cycle_id,
            start_date=start_date,
            end_date=end_date,
            carried_balance=carried_balance,
            correlation_id=correlation_id,
        ))

    async def log_cycle_closed(
        self,
        account_id: str,
        cycle_id: UUID,
        final_balance: Decimal,
        carried_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cycle_closed(
            account_id=account_id,
            cycle_id=cycle_id,
            final_balance=final_balance,
            carried_balance=carried_balance,
            correlation_id=correlation_id,
        ))

    async def log_race_resolved(
        self,
        entity_type: str,
        account_id: str,
        entity_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log that a concurrent creator won and its row was adopted."""
        await self.log(AuditEventBuilder.race_resolved(
            entity_type=entity_type,
            account_id=account_id,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_daily_record_created(
        self,
        account_id: str,
        record_id: UUID,
        record_date: date,
        available_budget: Decimal,
        remaining_days: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.daily_record_created(
            account_id=account_id,
            record_id=record_id,
            record_date=record_date,
            available_budget=available_budget,
            remaining_days=remaining_days,
            correlation_id=correlation_id,
        ))

    async def log_daily_record_spent_updated(
        self,
        record_id: UUID,
        total_spent: Decimal,
        daily_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.daily_record_spent_updated(
            record_id=record_id,
            total_spent=total_spent,
            daily_balance=daily_balance,
            correlation_id=correlation_id,
        ))

    async def log_cycle_balance_recalculated(
        self,
        cycle_id: UUID,
        accumulated_balance: Decimal,
        record_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cycle_balance_recalculated(
            cycle_id=cycle_id,
            accumulated_balance=accumulated_balance,
            record_count=record_count,
            correlation_id=correlation_id,
        ))

    async def log_expense_changed(
        self,
        event_type: AuditEventType,
        account_id: str,
        expense_id: UUID,
        amount: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an expense being added, updated or deleted."""
        await self.log(AuditEventBuilder.expense_changed(
            event_type=event_type,
            account_id=account_id,
            expense_id=expense_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        field: str,
        message: str,
        account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            field=field,
            message=message,
            account_id=account_id,
            correlation_id=correlation_id,
        ))

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            account_id=account_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a request (e.g., adding an expense).
    Pass it through all subsequent operations.
    """
    return uuid4()
