"""
Tests for the maintenance scheduler.

Tests cover:
- Sweep registration
- Start/stop lifecycle
- Failure counting and auto-disable
- setup_scheduler wiring of the maintenance sweeps
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from riddlebridge.services.scheduler import (
    MAX_CONSECUTIVE_FAILURES,
    BackgroundScheduler,
    Sweep,
    setup_scheduler,
)


@pytest.fixture
def scheduler():
    return BackgroundScheduler(stagger_seconds=0)


def maintenance_mock(expired: int = 0, interrupted: int = 0) -> MagicMock:
    maintenance = MagicMock()
    maintenance.expire_pending = AsyncMock(return_value=expired)
    maintenance.interrupt_stale_executions = AsyncMock(return_value=interrupted)
    return maintenance


class TestSweep:
    def test_defaults(self):
        sweep = Sweep(name="expire_pending", func=AsyncMock(), interval_seconds=30.0)

        assert sweep.enabled is True
        assert sweep.as_dict()["last_run"] is None
        assert sweep.affected_total == 0


class TestRegistration:
    def test_add_sweep(self, scheduler):
        scheduler.add_sweep("expire_pending", AsyncMock(), 60)
        assert scheduler.status()["sweeps"]["expire_pending"]["interval_seconds"] == 60

    def test_duplicate_ignored(self, scheduler):
        scheduler.add_sweep("expire_pending", AsyncMock(), 60)
        scheduler.add_sweep("expire_pending", AsyncMock(), 5)
        assert scheduler.status()["sweeps"]["expire_pending"]["interval_seconds"] == 60


class TestLifecycle:
    async def test_runs_until_stopped(self, scheduler):
        func = AsyncMock(return_value=2)
        scheduler.add_sweep("expire_pending", func, 0.05)

        await scheduler.start()
        await asyncio.sleep(0.12)
        await scheduler.stop()

        sweep = scheduler.status()["sweeps"]["expire_pending"]
        assert func.await_count >= 2
        assert sweep["runs"] == func.await_count
        assert sweep["affected_total"] == 2 * func.await_count
        assert scheduler.is_running is False

    async def test_disabled_sweep_not_started(self, scheduler):
        func = AsyncMock(return_value=0)
        scheduler.add_sweep("expire_pending", func, 0.01, enabled=False)

        await scheduler.start()
        await asyncio.sleep(0.03)
        await scheduler.stop()

        func.assert_not_awaited()

    async def test_start_twice(self, scheduler):
        await scheduler.start()
        started_at = scheduler.status()["started_at"]
        await scheduler.start()

        assert scheduler.status()["started_at"] == started_at
        await scheduler.stop()

    async def test_stop_when_idle(self, scheduler):
        await scheduler.stop()
        assert scheduler.status()["running"] is False


class TestFailures:
    async def test_failure_is_counted(self, scheduler):
        scheduler.add_sweep(
            "expire_pending", AsyncMock(side_effect=RuntimeError("store unavailable")), 60
        )

        assert await scheduler.run_now("expire_pending") is False

        sweep = scheduler.status()["sweeps"]["expire_pending"]
        assert sweep["failures"] == 1
        assert sweep["last_error"] == "store unavailable"

    async def test_success_resets_consecutive_failures(self, scheduler):
        scheduler.add_sweep("expire_pending", AsyncMock(side_effect=[RuntimeError("boom"), 4]), 60)

        await scheduler.run_now("expire_pending")
        await scheduler.run_now("expire_pending")

        sweep = scheduler.status()["sweeps"]["expire_pending"]
        assert sweep["consecutive_failures"] == 0
        assert sweep["last_affected"] == 4

    async def test_auto_disable(self, scheduler):
        scheduler.add_sweep("expire_pending", AsyncMock(side_effect=RuntimeError("always")), 0)

        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        sweep = scheduler.status()["sweeps"]["expire_pending"]
        assert sweep["auto_disabled"] is True
        assert sweep["enabled"] is False
        assert sweep["consecutive_failures"] == MAX_CONSECUTIVE_FAILURES

    async def test_unknown_sweep(self, scheduler):
        assert await scheduler.run_now("missing") is False


class TestSetupScheduler:
    def test_registers_maintenance_sweeps(self, settings):
        settings = settings.model_copy(update={"scheduler_enabled": True})

        scheduler = setup_scheduler(settings, maintenance_mock())

        sweeps = scheduler.status()["sweeps"]
        assert set(sweeps) == {"expire_pending", "interrupt_stale_executions"}
        assert sweeps["expire_pending"]["interval_seconds"] == settings.maintenance_interval_seconds

    def test_disabled(self, settings):
        scheduler = setup_scheduler(settings, maintenance_mock())
        assert scheduler.status()["sweeps"] == {}

    async def test_sweep_calls_maintenance(self, settings):
        settings = settings.model_copy(update={"scheduler_enabled": True})
        maintenance = maintenance_mock(expired=3)

        scheduler = setup_scheduler(settings, maintenance)

        assert await scheduler.run_now("expire_pending") is True
        maintenance.expire_pending.assert_awaited_once()
        assert scheduler.status()["sweeps"]["expire_pending"]["affected_total"] == 3
