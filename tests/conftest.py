"""Shared fixtures for the budget tests."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from fluid_budget.audit import AuditLogger
from fluid_budget.config import BudgetSettings, StorageSettings
from fluid_budget.models.budget import BudgetConfig, CarryOverMode
from fluid_budget.services.storage import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    SQLiteClient,
)


class FakeClock:
    """Callable clock whose "today" the test moves by hand."""

    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int = 1) -> None:
        self.today += timedelta(days=days)


@pytest.fixture
def clock():
    # Wednesday; with a Monday start the cycle is 2024-06-03..2024-06-09
    return FakeClock(date(2024, 6, 5))


@pytest.fixture
def storage():
    return InMemoryBudgetStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def budget_settings():
    return BudgetSettings(
        default_week_start_day=1,
        default_carry_over_mode=CarryOverMode.CARRY_DEFICIT,
        max_daily_base=100000.0,
        max_expense_amount=1000000.0,
        default_expense_category="Other",
    )


@pytest.fixture
def config():
    return BudgetConfig(
        account_id="acc-1",
        daily_base=Decimal("100"),
        week_start_day=1,
        carry_over_mode=CarryOverMode.CARRY_ALL,
    )


@pytest.fixture
def sqlite_client(tmp_path):
    client = SQLiteClient(StorageSettings(
        backend="sqlite",
        sqlite_path=str(tmp_path / "budget.db"),
        connect_attempts=1,
    ))
    client.init_schema()
    return client
