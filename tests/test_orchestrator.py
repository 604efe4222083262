"""
Tests for the budget service flows.

Every flow returns an ActionResult; nothing here should raise.
"""

import asyncio

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from fluid_budget.config import get_settings
from fluid_budget.models.audit import AuditEventType
from fluid_budget.models.budget import BudgetStatus, CarryOverMode
from fluid_budget.orchestrator import BudgetService, create_budget_service
from fluid_budget.services.storage import InMemoryBudgetStorage, StorageError


class BrokenExpenseStorage(InMemoryBudgetStorage):
    """Store whose expense insert always fails."""

    async def insert_expense(self, expense):
        raise StorageError("connection reset")


@pytest.fixture
def service(storage, audit_logger, budget_settings, clock):
    return BudgetService(storage, audit_logger, budget_settings, clock)


def run(coro):
    return asyncio.run(coro)


def event_types(audit_storage):
    return [e.event_type for e in run(audit_storage.get_recent_events(limit=1000))]


class TestBudgetConfigFlow:
    """Tests for configuring the daily base."""

    def test_create_uses_defaults(self, service, audit_storage):
        result = run(service.upsert_budget_config("acc-1", 100))

        assert result.success is True
        assert result.data.daily_base == Decimal("100")
        assert result.data.week_start_day == 1
        assert result.data.carry_over_mode == CarryOverMode.CARRY_DEFICIT
        assert AuditEventType.CONFIG_CREATED in event_types(audit_storage)

    def test_update_keeps_omitted_fields(self, service, audit_storage):
        async def scenario():
            created = await service.upsert_budget_config("acc-1", 100, 0, "carry_all")
            updated = await service.upsert_budget_config("acc-1", "120.50")
            return created, updated

        created, updated = run(scenario())

        assert updated.data.id == created.data.id
        assert updated.data.daily_base == Decimal("120.50")
        assert updated.data.week_start_day == 0
        assert updated.data.carry_over_mode == CarryOverMode.CARRY_ALL
        assert AuditEventType.CONFIG_UPDATED in event_types(audit_storage)

    def test_get_active_config_absent(self, service):
        """Test that a missing config is success with no data."""
        result = run(service.get_active_budget_config("acc-1"))
        assert result.success is True
        assert result.data is None

    @pytest.mark.parametrize("kwargs,message", [
        ({"daily_base": 0}, "Daily base must be positive"),
        ({"daily_base": 100001}, "Daily base too high"),
        ({"daily_base": 100, "week_start_day": 9}, "Week start day"),
        ({"daily_base": 100, "carry_over_mode": "carry_some"}, "Unknown carry-over mode"),
    ])
    def test_invalid_input_rejected(self, service, audit_storage, kwargs, message):
        result = run(service.upsert_budget_config("acc-1", **kwargs))

        assert result.success is False
        assert message in result.error
        assert AuditEventType.VALIDATION_FAILED in event_types(audit_storage)
        assert run(service.get_active_budget_config("acc-1")).data is None


class TestTodayBudgetFlow:
    """Tests for the today view."""

    def test_requires_config(self, service):
        result = run(service.get_today_budget("acc-1"))
        assert result.success is False
        assert result.error == "Budget configuration not found"

    def test_fresh_cycle(self, service):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            return await service.get_today_budget("acc-1")

        today = run(scenario()).data

        assert today.budget_date == date(2024, 6, 5)
        assert today.available_budget == Decimal("100.00")
        assert today.adjustment == Decimal("0.00")
        assert today.remaining_today == Decimal("100.00")
        assert today.manual_expenses == Decimal("0.00")
        assert today.status == BudgetStatus.AT_BASE
        assert today.cycle_info.days_remaining == 5
        assert today.cycle_info.week_start == date(2024, 6, 3)
        assert today.cycle_info.week_end == date(2024, 6, 9)

    def test_savings_raise_tomorrow(self, service, clock):
        """Test that today's saving is spread over the remaining days."""
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            await service.add_expense("acc-1", 30)
            same_day = await service.get_today_budget("acc-1")
            clock.advance()
            next_day = await service.get_today_budget("acc-1")
            return same_day.data, next_day.data

        same_day, next_day = run(scenario())

        assert same_day.available_budget == Decimal("100.00")
        assert same_day.total_spent_today == Decimal("30.00")
        assert same_day.remaining_today == Decimal("70.00")
        assert same_day.manual_expenses == Decimal("30.00")
        # 100 + 70 / 4
        assert next_day.available_budget == Decimal("117.50")
        assert next_day.adjustment == Decimal("17.50")
        assert next_day.status == BudgetStatus.ABOVE_BASE

    def test_status_uses_current_daily_base(self, service):
        """Test a same-day base change moves the status, not today's budget."""
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            await service.get_today_budget("acc-1")
            await service.upsert_budget_config("acc-1", 250)
            return await service.get_today_budget("acc-1")

        today = run(scenario()).data

        assert today.available_budget == Decimal("100.00")
        assert today.base_budget == Decimal("100.00")
        # 100 / 250 = 0.4
        assert today.status == BudgetStatus.CRITICAL


class TestExpenseFlow:
    """Tests for adding, editing and removing expenses."""

    def test_add_expense_rebalances_cycle(self, service, audit_storage):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            return await service.add_expense(
                "acc-1", "45.50", category="Groceries", description="Market", user_id="u-1"
            )

        result = run(scenario())

        assert result.success is True
        change = result.data
        assert change.expense.amount == Decimal("45.50")
        assert change.expense.category == "Groceries"
        assert change.expense.expense_date == date(2024, 6, 5)
        assert change.daily_record.total_spent == Decimal("45.50")
        assert change.daily_record.daily_balance == Decimal("54.50")
        assert change.accumulated_balance == Decimal("54.50")
        assert AuditEventType.EXPENSE_ADDED in event_types(audit_storage)

    def test_default_category(self, service):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            return await service.add_expense("acc-1", 5)

        assert run(scenario()).data.expense.category == "Other"

    def test_backdated_expense_inside_cycle(self, service):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            return await service.add_expense("acc-1", 20, expense_date="2024-06-03")

        change = run(scenario()).data
        assert change.daily_record.record_date == date(2024, 6, 3)
        assert change.daily_record.remaining_days == 7

    @pytest.mark.parametrize("expense_date", [date(2024, 6, 2), date(2024, 6, 10)])
    def test_expense_outside_cycle_rejected(self, service, expense_date):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            result = await service.add_expense("acc-1", 20, expense_date=expense_date)
            expenses = await service.get_expenses_for_date("acc-1", expense_date)
            return result, expenses

        result, expenses = run(scenario())
        assert result.success is False
        assert "outside the current cycle" in result.error
        assert expenses.data == []

    @pytest.mark.parametrize("amount", [0, -3, 1000001, "abc"])
    def test_invalid_amount_rejected(self, service, amount):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            return await service.add_expense("acc-1", amount)

        result = run(scenario())
        assert result.success is False
        assert "Expense amount" in result.error

    def test_add_requires_config(self, service):
        result = run(service.add_expense("acc-1", 10))
        assert result.error == "Budget configuration not found"

    def test_update_expense(self, service):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            added = await service.add_expense("acc-1", 30)
            return await service.update_expense(
                "acc-1", added.data.expense.id, amount=Decimal("50"), category="Transport"
            )

        change = run(scenario()).data
        assert change.expense.amount == Decimal("50.00")
        assert change.expense.category == "Transport"
        assert change.daily_record.total_spent == Decimal("50.00")
        assert change.accumulated_balance == Decimal("50.00")

    def test_update_rejects_overlong_category(self, service):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            added = await service.add_expense("acc-1", 30)
            return await service.update_expense("acc-1", added.data.expense.id, category="x" * 101)

        result = run(scenario())
        assert result.success is False
        assert "category" in result.error

    def test_delete_expense_restores_balance(self, service):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            keep = await service.add_expense("acc-1", 10)
            drop = await service.add_expense("acc-1", 25)
            deleted = await service.delete_expense("acc-1", drop.data.expense.id)
            again = await service.delete_expense("acc-1", drop.data.expense.id)
            listed = await service.get_expenses_for_date("acc-1", "2024-06-05")
            return keep, deleted, again, listed

        keep, deleted, again, listed = run(scenario())

        assert deleted.success is True
        assert deleted.data.daily_record.total_spent == Decimal("10.00")
        assert deleted.data.accumulated_balance == Decimal("90.00")
        assert again.success is False
        assert again.error == "Expense not found"
        assert [e.id for e in listed.data] == [keep.data.expense.id]

    def test_other_account_cannot_touch_expense(self, service):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            added = await service.add_expense("acc-1", 10)
            return await service.delete_expense("acc-2", added.data.expense.id)

        assert run(scenario()).error == "Expense not found"

    def test_unknown_expense(self, service):
        result = run(service.update_expense("acc-1", uuid4(), amount=5))
        assert result.error == "Expense not found"

    def test_malformed_date_rejected(self, service):
        result = run(service.get_expenses_for_date("acc-1", "06/05/2024"))
        assert result.success is False
        assert "YYYY-MM-DD" in result.error

    def test_storage_failure_is_reported_generically(
        self, audit_logger, audit_storage, budget_settings, clock
    ):
        service = BudgetService(BrokenExpenseStorage(), audit_logger, budget_settings, clock)

        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            return await service.add_expense("acc-1", 10)

        result = run(scenario())
        assert result.success is False
        assert result.error == "Could not complete operation: add expense"
        assert AuditEventType.STORAGE_ERROR in event_types(audit_storage)


class TestCycleViews:
    """Tests for the cycle and week summary views."""

    def test_current_cycle_rolls_over_with_deficit(self, service, clock):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            await service.add_expense("acc-1", 150)
            first = await service.get_current_cycle("acc-1")
            clock.advance(7)
            second = await service.get_current_cycle("acc-1")
            return first.data, second.data

        first, second = run(scenario())

        assert first.accumulated_balance == Decimal("-50.00")
        assert second.id != first.id
        assert second.start_date == date(2024, 6, 10)
        assert second.carried_balance == Decimal("-50.00")

    def test_surplus_dropped_with_deficit_mode(self, service, clock):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            await service.add_expense("acc-1", 40)
            clock.advance(7)
            return await service.get_current_cycle("acc-1")

        assert run(scenario()).data.carried_balance == Decimal("0")

    def test_week_summary(self, service, clock):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            await service.add_expense("acc-1", 130)
            clock.advance()
            await service.add_expense("acc-1", 50)
            return await service.get_week_summary("acc-1")

        summary = run(scenario()).data

        assert summary.total_budget == Decimal("700.00")
        assert summary.total_spent == Decimal("180.00")
        assert summary.total_saved == Decimal("520.00")
        assert summary.average_daily_spent == Decimal("90.00")
        assert summary.days_over_budget == 1
        assert summary.days_under_budget == 1
        assert len(summary.daily_records) == 2

    def test_week_summary_without_records(self, service):
        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            return await service.get_week_summary("acc-1")

        summary = run(scenario()).data
        assert summary.total_spent == Decimal("0.00")
        assert summary.average_daily_spent == Decimal("0.00")
        assert summary.days_over_budget == 0

    def test_views_require_config(self, service):
        assert run(service.get_current_cycle("acc-1")).error == "Budget configuration not found"
        assert run(service.get_week_summary("acc-1")).error == "Budget configuration not found"


class TestServiceFactory:
    """Tests for create_budget_service."""

    def test_memory_backend(self, monkeypatch):
        monkeypatch.setenv("BUDGET_STORAGE_BACKEND", "memory")
        get_settings.cache_clear()

        service = create_budget_service()
        result = run(service.upsert_budget_config("acc-1", 100))
        assert result.success is True

    def test_sqlite_backend(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BUDGET_STORAGE_BACKEND", "sqlite")
        monkeypatch.setenv("BUDGET_STORAGE_SQLITE_PATH", str(tmp_path / "budget.db"))
        get_settings.cache_clear()

        service = create_budget_service()

        async def scenario():
            await service.upsert_budget_config("acc-1", 100)
            added = await service.add_expense("acc-1", 12)
            today = await service.get_today_budget("acc-1")
            return added, today

        added, today = run(scenario())
        assert added.success is True
        assert today.data.total_spent_today == Decimal("12.00")
        assert (tmp_path / "budget.db").exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
