"""
Tests for the week cycle lifecycle.

Concurrency tests run two requests with asyncio.gather against the
in-memory store, which yields to the event loop on every call, so both
requests see "no cycle yet" before either one inserts.
"""

import asyncio

import pytest
from datetime import date
from decimal import Decimal

from fluid_budget.cycle import BudgetOperationError, CycleManager
from fluid_budget.models.audit import AuditEventType
from fluid_budget.models.budget import CarryOverMode, CycleStatus, WeekCycle
from fluid_budget.services.storage import (
    DuplicateError,
    InMemoryBudgetStorage,
    StorageError,
)


def events_of(audit_storage, event_type):
    events = asyncio.run(audit_storage.get_recent_events(limit=1000))
    return [e for e in events if e.event_type == event_type]


class FailingInsertStorage(InMemoryBudgetStorage):
    """Store whose cycle insert fails with a non-duplicate error."""

    async def insert_cycle(self, cycle):
        raise StorageError("disk I/O error")


class VanishingWinnerStorage(InMemoryBudgetStorage):
    """Store that reports a duplicate but never shows the winning row."""

    async def insert_cycle(self, cycle):
        raise DuplicateError("UNIQUE constraint failed")


class TestEnsureActiveCycle:
    """Tests for creating and reusing the active cycle."""

    def test_creates_cycle_for_today(self, storage, audit_logger, audit_storage, clock, config):
        """Test the first access opens the week containing today."""
        manager = CycleManager(storage, audit_logger, clock)

        cycle = asyncio.run(manager.ensure_active_cycle("acc-1", config))

        assert cycle.start_date == date(2024, 6, 3)
        assert cycle.end_date == date(2024, 6, 9)
        assert cycle.initial_budget == Decimal("700.00")
        assert cycle.carried_balance == Decimal("0.00")
        assert cycle.accumulated_balance == Decimal("0.00")
        assert cycle.status == CycleStatus.ACTIVE
        assert cycle.config_id == config.id
        assert len(events_of(audit_storage, AuditEventType.CYCLE_CREATED)) == 1

    def test_second_call_reuses_cycle(self, storage, clock, config):
        manager = CycleManager(storage, clock=clock)

        async def scenario():
            first = await manager.ensure_active_cycle("acc-1", config)
            second = await manager.ensure_active_cycle("acc-1", config)
            return first, second

        first, second = asyncio.run(scenario())
        assert first.id == second.id

    def test_no_active_cycle_is_none(self, storage, clock):
        """Test that absence is reported as None, not as an error."""
        manager = CycleManager(storage, clock=clock)
        assert asyncio.run(manager.get_active_cycle("acc-1")) is None

    def test_concurrent_first_access_creates_one_cycle(
        self, storage, audit_logger, audit_storage, clock, config
    ):
        """Test that two simultaneous requests end up with the same row."""
        manager = CycleManager(storage, audit_logger, clock)

        async def scenario():
            return await asyncio.gather(
                manager.ensure_active_cycle("acc-1", config),
                manager.ensure_active_cycle("acc-1", config),
            )

        first, second = asyncio.run(scenario())

        assert first.id == second.id
        assert first.model_dump() == second.model_dump()
        assert len(events_of(audit_storage, AuditEventType.CYCLE_CREATED)) == 1
        assert len(events_of(audit_storage, AuditEventType.CYCLE_RACE_RESOLVED)) == 1

    def test_create_returns_existing_window(self, storage, clock, config):
        """Test that create_new_cycle never duplicates a window."""
        manager = CycleManager(storage, clock=clock)

        async def scenario():
            first = await manager.create_new_cycle("acc-1", config)
            again = await manager.create_new_cycle("acc-1", config, date(2024, 6, 8), Decimal("50"))
            return first, again

        first, again = asyncio.run(scenario())
        assert again.id == first.id
        assert again.carried_balance == Decimal("0.00")

    def test_carried_balance_seeds_accumulated(self, storage, clock, config):
        manager = CycleManager(storage, clock=clock)
        cycle = asyncio.run(manager.create_new_cycle("acc-1", config, carried_balance=Decimal("-12.345")))
        assert cycle.carried_balance == Decimal("-12.35")
        assert cycle.accumulated_balance == Decimal("-12.35")


class TestCycleTransition:
    """Tests for closing an expired cycle and opening the next one."""

    @pytest.mark.parametrize("mode,final_balance,expected_carry", [
        (CarryOverMode.RESET, Decimal("-30"), Decimal("0")),
        (CarryOverMode.CARRY_ALL, Decimal("-30"), Decimal("-30")),
        (CarryOverMode.CARRY_ALL, Decimal("45.50"), Decimal("45.50")),
        (CarryOverMode.CARRY_DEFICIT, Decimal("45.50"), Decimal("0")),
        (CarryOverMode.CARRY_DEFICIT, Decimal("-30"), Decimal("-30")),
        (CarryOverMode.CARRY_CREDIT, Decimal("45.50"), Decimal("45.50")),
        (CarryOverMode.CARRY_CREDIT, Decimal("-30"), Decimal("0")),
    ])
    def test_rollover_applies_carry_over_mode(
        self, storage, clock, config, mode, final_balance, expected_carry
    ):
        config = config.model_copy(update={"carry_over_mode": mode})
        manager = CycleManager(storage, clock=clock)

        async def scenario():
            old = await manager.ensure_active_cycle("acc-1", config)
            await storage.update_cycle_balance(old.id, final_balance)
            clock.advance(7)
            new = await manager.ensure_active_cycle("acc-1", config)
            return await storage.get_cycle(old.id), new

        old, new = asyncio.run(scenario())

        assert old.status == CycleStatus.CLOSED
        assert new.id != old.id
        assert new.start_date == date(2024, 6, 10)
        assert new.end_date == date(2024, 6, 16)
        assert new.carried_balance == expected_carry
        assert new.accumulated_balance == expected_carry

    def test_failed_open_after_close_loses_carry(self, clock, config):
        """Test the window between closing the old week and opening the new one."""
        storage = FailingInsertStorage()
        manager = CycleManager(storage, clock=clock)
        old = WeekCycle(
            account_id="acc-1",
            config_id=config.id,
            start_date=date(2024, 6, 3),
            end_date=date(2024, 6, 9),
            initial_budget=Decimal("700.00"),
            carried_balance=Decimal("25"),
            accumulated_balance=Decimal("25"),
        )
        # seed through the base class, the subclass insert always fails
        asyncio.run(InMemoryBudgetStorage.insert_cycle(storage, old))
        clock.advance(7)

        with pytest.raises(BudgetOperationError):
            asyncio.run(manager.handle_cycle_transition("acc-1", config))

        assert asyncio.run(storage.get_cycle(old.id)).status == CycleStatus.CLOSED
        assert asyncio.run(storage.find_active_cycle("acc-1")) is None

    def test_end_date_is_still_current(self, storage, clock, config):
        """Test that the cycle is kept on its last day."""
        manager = CycleManager(storage, clock=clock)

        async def scenario():
            first = await manager.ensure_active_cycle("acc-1", config)
            clock.today = date(2024, 6, 9)
            return first, await manager.ensure_active_cycle("acc-1", config)

        first, last_day = asyncio.run(scenario())
        assert last_day.id == first.id

    def test_stale_account_jumps_to_current_week(self, storage, clock, config):
        """Test that weeks nobody touched are skipped, not back-filled."""
        config = config.model_copy(update={"carry_over_mode": CarryOverMode.CARRY_ALL})
        manager = CycleManager(storage, clock=clock)

        async def scenario():
            old = await manager.ensure_active_cycle("acc-1", config)
            await storage.update_cycle_balance(old.id, Decimal("-20"))
            clock.advance(23)
            return await manager.ensure_active_cycle("acc-1", config)

        new = asyncio.run(scenario())
        assert new.start_date == date(2024, 6, 24)
        assert new.carried_balance == Decimal("-20")

    def test_concurrent_rollover_creates_one_successor(
        self, storage, audit_logger, audit_storage, clock, config
    ):
        manager = CycleManager(storage, audit_logger, clock)

        async def scenario():
            old = await manager.ensure_active_cycle("acc-1", config)
            clock.advance(7)
            first, second = await asyncio.gather(
                manager.ensure_active_cycle("acc-1", config),
                manager.ensure_active_cycle("acc-1", config),
            )
            return old, first, second, await storage.find_active_cycle("acc-1")

        old, first, second, active = asyncio.run(scenario())
        assert first.id == second.id == active.id
        assert first.id != old.id
        assert len(events_of(audit_storage, AuditEventType.CYCLE_CREATED)) == 2

    def test_close_event_records_carry(self, storage, audit_logger, audit_storage, clock, config):
        manager = CycleManager(storage, audit_logger, clock)

        async def scenario():
            old = await manager.ensure_active_cycle("acc-1", config)
            await storage.update_cycle_balance(old.id, Decimal("-8.40"))
            clock.advance(7)
            await manager.ensure_active_cycle("acc-1", config)

        asyncio.run(scenario())
        closed = events_of(audit_storage, AuditEventType.CYCLE_CLOSED)
        assert len(closed) == 1
        assert closed[0].details["carried_balance"] == Decimal("-8.40")


class TestCycleFailures:
    """Tests for persistence failures."""

    def test_storage_error_is_wrapped(self, audit_logger, audit_storage, clock, config):
        manager = CycleManager(FailingInsertStorage(), audit_logger, clock)

        with pytest.raises(BudgetOperationError) as exc_info:
            asyncio.run(manager.ensure_active_cycle("acc-1", config))

        assert exc_info.value.operation == "create week cycle"
        assert "Failed to create week cycle" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, StorageError)
        assert len(events_of(audit_storage, AuditEventType.STORAGE_ERROR)) == 1

    def test_duplicate_without_winner_is_fatal(self, clock, config):
        """Test that a conflict is re-read exactly once, not retried."""
        manager = CycleManager(VanishingWinnerStorage(), clock=clock)

        with pytest.raises(BudgetOperationError):
            asyncio.run(manager.ensure_active_cycle("acc-1", config))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
