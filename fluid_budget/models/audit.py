"""
Audit Models for Fluid Budget

Every state change of the budget engine is recorded as an audit event.
This provides:
1. Traceability of cycle transitions and carry-over amounts
2. Visibility into creation races and how they were resolved
3. Debugging information when a persistence call fails

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from fluid_budget.models.budget import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Configuration
    CONFIG_CREATED = "config_created"
    CONFIG_UPDATED = "config_updated"

    # Cycle lifecycle
    CYCLE_CREATED = "cycle_created"
    CYCLE_CLOSED = "cycle_closed"
    CYCLE_RACE_RESOLVED = "cycle_race_resolved"
    CYCLE_BALANCE_RECALCULATED = "cycle_balance_recalculated"

    # Daily records
    DAILY_RECORD_CREATED = "daily_record_created"
    DAILY_RECORD_RACE_RESOLVED = "daily_record_race_resolved"
    DAILY_RECORD_SPENT_UPDATED = "daily_record_spent_updated"

    # Expenses
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - which account and row is this about?
    account_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'cycle', 'daily_record', 'expense')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking the events of one request
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "account_id": self.account_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
            "error_message": self.error_message,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_log table.

        Columns in order:
        (event_id, timestamp, event_type, severity, account_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.account_id,
            self.entity_type,
            str(self.entity_id) if self.entity_id else None,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps({k: _jsonable(v) for k, v in self.details.items()}),
            self.error_message,
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.cycle_closed(account_id, cycle_id, final, carried)
        event = AuditEventBuilder.race_resolved("daily_record", account_id, record_id)
    """

    @staticmethod
    def config_saved(
        account_id: str,
        config_id: UUID,
        daily_base: Decimal,
        created: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.CONFIG_CREATED if created
                else AuditEventType.CONFIG_UPDATED
            ),
            account_id=account_id,
            entity_type="config",
            entity_id=config_id,
            correlation_id=correlation_id,
            description=f"Budget config {'created' if created else 'updated'}: daily base {daily_base}",
            details={"daily_base": daily_base},
        )

    @staticmethod
    def cycle_created(
        account_id: str,
        cycle_id: UUID,
        start_date: date,
        end_date: date,
        carried_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CYCLE_CREATED,
            account_id=account_id,
            entity_type="cycle",
            entity_id=cycle_id,
            correlation_id=correlation_id,
            description=f"Week cycle opened: {start_date} to {end_date}",
            details={
                "start_date": start_date,
                "end_date": end_date,
                "carried_balance": carried_balance,
            },
        )

    @staticmethod
    def cycle_closed(
        account_id: str,
        cycle_id: UUID,
        final_balance: Decimal,
        carried_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CYCLE_CLOSED,
            account_id=account_id,
            entity_type="cycle",
            entity_id=cycle_id,
            correlation_id=correlation_id,
            description=f"Week cycle closed with balance {final_balance}, carrying {carried_balance}",
            details={
                "final_balance": final_balance,
                "carried_balance": carried_balance,
            },
        )

    @staticmethod
    def race_resolved(
        entity_type: str,
        account_id: str,
        entity_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.CYCLE_RACE_RESOLVED
            if entity_type == "cycle"
            else AuditEventType.DAILY_RECORD_RACE_RESOLVED
        )
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.DEBUG,
            account_id=account_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Concurrent {entity_type} creation detected, adopted existing row",
        )

    @staticmethod
    def daily_record_created(
        account_id: str,
        record_id: UUID,
        record_date: date,
        available_budget: Decimal,
        remaining_days: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DAILY_RECORD_CREATED,
            account_id=account_id,
            entity_type="daily_record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Daily record for {record_date}: available {available_budget}",
            details={
                "record_date": record_date,
                "available_budget": available_budget,
                "remaining_days": remaining_days,
            },
        )

    @staticmethod
    def daily_record_spent_updated(
        record_id: UUID,
        total_spent: Decimal,
        daily_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DAILY_RECORD_SPENT_UPDATED,
            entity_type="daily_record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Daily record spent set to {total_spent}, balance {daily_balance}",
            details={
                "total_spent": total_spent,
                "daily_balance": daily_balance,
            },
        )

    @staticmethod
    def cycle_balance_recalculated(
        cycle_id: UUID,
        accumulated_balance: Decimal,
        record_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CYCLE_BALANCE_RECALCULATED,
            entity_type="cycle",
            entity_id=cycle_id,
            correlation_id=correlation_id,
            description=f"Cycle balance recalculated from {record_count} records: {accumulated_balance}",
            details={
                "accumulated_balance": accumulated_balance,
                "record_count": record_count,
            },
        )

    @staticmethod
    def expense_changed(
        event_type: AuditEventType,
        account_id: str,
        expense_id: UUID,
        amount: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            account_id=account_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Budget expense {verb}",
            details={"amount": amount} if amount is not None else {},
        )

    @staticmethod
    def validation_failed(
        field: str,
        message: str,
        account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Validation failed for {field}",
            error_message=message,
            details={"field": field},
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        account_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )
