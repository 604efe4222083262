"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the bundled relational backend because:
1. It has real UNIQUE constraints, which is all the engine's race
   handling needs
2. No database server to set up for a personal budget
3. The same schema maps one-to-one onto a hosted Postgres

TRADEOFFS:
- One writer at a time (fine for a single household)
- Money is stored as TEXT so Decimal values round-trip exactly;
  sums are therefore computed in Python, not in SQL

Unique violations surface as DuplicateError; any other driver failure
becomes StorageError naming the operation. Opening the database is
retried with backoff (a locked file is transient); statements are not.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from pydantic import BaseModel
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fluid_budget.config import StorageSettings, get_settings
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
    StorageConnectionError,
    StorageError,
)


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS budget_configs (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    daily_base TEXT NOT NULL,
    week_start_day INTEGER NOT NULL CHECK (week_start_day BETWEEN 0 AND 6),
    carry_over_mode TEXT NOT NULL
        CHECK (carry_over_mode IN ('reset', 'carry_all', 'carry_deficit', 'carry_credit')),
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_budget_configs_active
ON budget_configs (account_id) WHERE is_active = 1;

CREATE TABLE IF NOT EXISTS week_cycles (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    config_id TEXT REFERENCES budget_configs (id),
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    initial_budget TEXT NOT NULL,
    carried_balance TEXT NOT NULL,
    accumulated_balance TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('active', 'closed')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (account_id, start_date, end_date)
);

CREATE INDEX IF NOT EXISTS ix_week_cycles_status ON week_cycles (account_id, status);

CREATE TABLE IF NOT EXISTS daily_records (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    cycle_id TEXT NOT NULL REFERENCES week_cycles (id) ON DELETE CASCADE,
    record_date TEXT NOT NULL,
    base_budget TEXT NOT NULL,
    available_budget TEXT NOT NULL,
    total_spent TEXT NOT NULL,
    daily_balance TEXT NOT NULL,
    remaining_days INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (account_id, record_date)
);

CREATE INDEX IF NOT EXISTS ix_daily_records_cycle ON daily_records (cycle_id);

CREATE TABLE IF NOT EXISTS budget_expenses (
    id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL,
    daily_record_id TEXT NOT NULL REFERENCES daily_records (id) ON DELETE CASCADE,
    user_id TEXT,
    amount TEXT NOT NULL,
    category TEXT NOT NULL,
    description TEXT,
    expense_date TEXT NOT NULL,
    expense_time TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_budget_expenses_record ON budget_expenses (daily_record_id);
CREATE INDEX IF NOT EXISTS ix_budget_expenses_date ON budget_expenses (account_id, expense_date);

CREATE TABLE IF NOT EXISTS audit_log (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    account_id TEXT,
    entity_type TEXT,
    entity_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS ix_audit_log_correlation ON audit_log (correlation_id);
"""


class SQLiteClient:
    """
    Low-level SQLite wrapper.

    Hands out one short-lived connection per operation, committing on
    success and rolling back on failure.
    """

    def __init__(self, settings: Optional[StorageSettings] = None):
        self._settings = settings or get_settings().storage
        self._schema_ready = False

    def _open(self) -> sqlite3.Connection:
        path = self._settings.sqlite_file
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), timeout=self._settings.connect_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def open_connection(self) -> sqlite3.Connection:
        """Open a connection, retrying while the database is locked."""
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self._settings.connect_attempts),
                wait=wait_exponential(multiplier=0.5, max=5),
                retry=retry_if_exception_type(sqlite3.OperationalError),
                reraise=False,
            ):
                with attempt:
                    return self._open()
        except RetryError as e:
            raise StorageConnectionError(
                f"Failed to open SQLite database {self._settings.sqlite_path}: "
                f"{e.last_attempt.exception()}"
            )
        except OSError as e:
            raise StorageConnectionError(f"Failed to open SQLite database: {e}")

    def init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        conn = self.open_connection()
        try:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialise schema: {e}")
        finally:
            conn.close()
        self._schema_ready = True

    @contextmanager
    def transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """
        One connection, one commit.

        Raises:
            DuplicateError: On a UNIQUE constraint violation
            StorageError: On any other driver error
        """
        if not self._schema_ready:
            self.init_schema()
        conn = self.open_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise DuplicateError(f"Duplicate key during {operation}: {e}")
            raise StorageError(f"Failed to {operation}: {e}")
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Failed to {operation}: {e}")
        finally:
            conn.close()


def _to_row(model: BaseModel) -> dict:
    """Model to column dict: Decimal, UUID, dates and enums become text."""
    return model.model_dump(mode="json")


def _insert(conn: sqlite3.Connection, table: str, row: dict) -> None:
    columns = ", ".join(row)
    placeholders = ", ".join(f":{name}" for name in row)
    conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", row)


class SQLiteBudgetStorage(BudgetStorageInterface):
    """
    SQLite implementation of budget storage.

    One table per row type; see SCHEMA_SQL for the constraints.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    def _fetch_one(self, operation: str, sql: str, params: tuple) -> Optional[sqlite3.Row]:
        with self._client.transaction(operation) as conn:
            return conn.execute(sql, params).fetchone()

    def _fetch_all(self, operation: str, sql: str, params: tuple) -> list[sqlite3.Row]:
        with self._client.transaction(operation) as conn:
            return conn.execute(sql, params).fetchall()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    async def get_active_config(self, account_id: str) -> Optional[BudgetConfig]:
        row = self._fetch_one(
            "get active config",
            "SELECT * FROM budget_configs WHERE account_id = ? AND is_active = 1",
            (account_id,),
        )
        return BudgetConfig.model_validate(dict(row)) if row else None

    async def insert_config(self, config: BudgetConfig) -> BudgetConfig:
        with self._client.transaction("insert config") as conn:
            _insert(conn, "budget_configs", _to_row(config))
        return config

    async def update_config(self, config: BudgetConfig) -> BudgetConfig:
        stored = config.model_copy(update={"updated_at": utcnow()})
        row = _to_row(stored)
        with self._client.transaction("update config") as conn:
            cursor = conn.execute(
                """
                UPDATE budget_configs
                SET daily_base = :daily_base, week_start_day = :week_start_day,
                    carry_over_mode = :carry_over_mode, is_active = :is_active,
                    updated_at = :updated_at
                WHERE id = :id
                """,
                row,
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Config not found: {config.id}")
        return stored

    # -------------------------------------------------------------------------
    # Week cycles
    # -------------------------------------------------------------------------

    async def get_cycle(self, cycle_id: UUID) -> Optional[WeekCycle]:
        row = self._fetch_one(
            "get cycle",
            "SELECT * FROM week_cycles WHERE id = ?",
            (str(cycle_id),),
        )
        return WeekCycle.model_validate(dict(row)) if row else None

    async def get_cycle_by_dates(
        self,
        account_id: str,
        start_date: date,
        end_date: date,
    ) -> Optional[WeekCycle]:
        row = self._fetch_one(
            "get cycle by dates",
            "SELECT * FROM week_cycles WHERE account_id = ? AND start_date = ? AND end_date = ?",
            (account_id, start_date.isoformat(), end_date.isoformat()),
        )
        return WeekCycle.model_validate(dict(row)) if row else None

    async def find_active_cycle(
        self,
        account_id: str,
        reference_date: Optional[date] = None,
    ) -> Optional[WeekCycle]:
        sql = "SELECT * FROM week_cycles WHERE account_id = ? AND status = 'active'"
        params: tuple = (account_id,)
        if reference_date is not None:
            day = reference_date.isoformat()
            sql += " AND start_date <= ? AND end_date >= ?"
            params += (day, day)
        row = self._fetch_one("find active cycle", sql + " ORDER BY start_date DESC", params)
        return WeekCycle.model_validate(dict(row)) if row else None

    async def insert_cycle(self, cycle: WeekCycle) -> WeekCycle:
        with self._client.transaction("insert cycle") as conn:
            _insert(conn, "week_cycles", _to_row(cycle))
        return cycle

    async def update_cycle_status(self, cycle_id: UUID, status: CycleStatus) -> WeekCycle:
        return self._update_cycle(
            "update cycle status", cycle_id, "status = ?", (CycleStatus(status).value,)
        )

    async def update_cycle_balance(
        self,
        cycle_id: UUID,
        accumulated_balance: Decimal,
    ) -> WeekCycle:
        return self._update_cycle(
            "update cycle balance", cycle_id, "accumulated_balance = ?", (str(accumulated_balance),)
        )

    def _update_cycle(self, operation: str, cycle_id: UUID, assignment: str, values: tuple) -> WeekCycle:
        with self._client.transaction(operation) as conn:
            cursor = conn.execute(
                f"UPDATE week_cycles SET {assignment}, updated_at = ? WHERE id = ?",
                values + (utcnow().isoformat(), str(cycle_id)),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Cycle not found: {cycle_id}")
            row = conn.execute("SELECT * FROM week_cycles WHERE id = ?", (str(cycle_id),)).fetchone()
        return WeekCycle.model_validate(dict(row))

    # -------------------------------------------------------------------------
    # Daily records
    # -------------------------------------------------------------------------

    async def get_daily_record(
        self,
        account_id: str,
        record_date: date,
    ) -> Optional[DailyRecord]:
        row = self._fetch_one(
            "get daily record",
            "SELECT * FROM daily_records WHERE account_id = ? AND record_date = ?",
            (account_id, record_date.isoformat()),
        )
        return DailyRecord.model_validate(dict(row)) if row else None

    async def get_daily_record_by_id(self, record_id: UUID) -> Optional[DailyRecord]:
        row = self._fetch_one(
            "get daily record",
            "SELECT * FROM daily_records WHERE id = ?",
            (str(record_id),),
        )
        return DailyRecord.model_validate(dict(row)) if row else None

    async def insert_daily_record(self, record: DailyRecord) -> DailyRecord:
        with self._client.transaction("insert daily record") as conn:
            _insert(conn, "daily_records", _to_row(record))
        return record

    async def update_daily_record_spent(
        self,
        record_id: UUID,
        total_spent: Decimal,
        daily_balance: Decimal,
    ) -> DailyRecord:
        with self._client.transaction("update daily record") as conn:
            cursor = conn.execute(
                """
                UPDATE daily_records
                SET total_spent = ?, daily_balance = ?, updated_at = ?
                WHERE id = ?
                """,
                (str(total_spent), str(daily_balance), utcnow().isoformat(), str(record_id)),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Daily record not found: {record_id}")
            row = conn.execute("SELECT * FROM daily_records WHERE id = ?", (str(record_id),)).fetchone()
        return DailyRecord.model_validate(dict(row))

    async def list_daily_records(self, cycle_id: UUID) -> list[DailyRecord]:
        rows = self._fetch_all(
            "list daily records",
            "SELECT * FROM daily_records WHERE cycle_id = ? ORDER BY record_date",
            (str(cycle_id),),
        )
        return [DailyRecord.model_validate(dict(row)) for row in rows]

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def insert_expense(self, expense: BudgetExpense) -> BudgetExpense:
        with self._client.transaction("insert expense") as conn:
            _insert(conn, "budget_expenses", _to_row(expense))
        return expense

    async def get_expense(self, account_id: str, expense_id: UUID) -> Optional[BudgetExpense]:
        row = self._fetch_one(
            "get expense",
            "SELECT * FROM budget_expenses WHERE id = ? AND account_id = ?",
            (str(expense_id), account_id),
        )
        return BudgetExpense.model_validate(dict(row)) if row else None

    async def update_expense(self, expense: BudgetExpense) -> BudgetExpense:
        stored = expense.model_copy(update={"updated_at": utcnow()})
        with self._client.transaction("update expense") as conn:
            cursor = conn.execute(
                """
                UPDATE budget_expenses
                SET amount = :amount, category = :category, description = :description,
                    updated_at = :updated_at
                WHERE id = :id AND account_id = :account_id
                """,
                _to_row(stored),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Expense not found: {expense.id}")
        return stored

    async def delete_expense(self, account_id: str, expense_id: UUID) -> bool:
        with self._client.transaction("delete expense") as conn:
            cursor = conn.execute(
                "DELETE FROM budget_expenses WHERE id = ? AND account_id = ?",
                (str(expense_id), account_id),
            )
            return cursor.rowcount > 0

    async def list_expenses(
        self,
        account_id: str,
        expense_date: Optional[date] = None,
    ) -> list[BudgetExpense]:
        sql = "SELECT * FROM budget_expenses WHERE account_id = ?"
        params: tuple = (account_id,)
        if expense_date is not None:
            sql += " AND expense_date = ?"
            params += (expense_date.isoformat(),)
        rows = self._fetch_all("list expenses", sql + " ORDER BY created_at DESC", params)
        return [BudgetExpense.model_validate(dict(row)) for row in rows]

    async def sum_expenses_for_record(self, daily_record_id: UUID) -> Decimal:
        rows = self._fetch_all(
            "sum expenses",
            "SELECT amount FROM budget_expenses WHERE daily_record_id = ?",
            (str(daily_record_id),),
        )
        return sum((Decimal(row["amount"]) for row in rows), Decimal("0"))


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    def _row_to_event(self, row: sqlite3.Row) -> AuditEvent:
        data = dict(row)
        details_json = data.pop("details_json")
        data["details"] = json.loads(details_json) if details_json else {}
        return AuditEvent.model_validate(data)

    async def append_event(self, event: AuditEvent) -> bool:
        with self._client.transaction("append audit event") as conn:
            conn.execute(
                "INSERT INTO audit_log VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                event.to_row(),
            )
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        with self._client.transaction("get audit events") as conn:
            rows = conn.execute(
                "SELECT * FROM audit_log WHERE correlation_id = ? ORDER BY timestamp",
                (str(correlation_id),),
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with self._client.transaction("get audit events") as conn:
            rows = conn.execute(
                "SELECT * FROM audit_log ORDER BY timestamp DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_event(row) for row in rows]
