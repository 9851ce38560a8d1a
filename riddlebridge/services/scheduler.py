"""
Maintenance Scheduler

Drives the pipeline maintenance sweeps on the event loop. Each sweep is an
async callable returning how many transactions it moved; the scheduler
keeps per-sweep counters and switches a sweep off after it has failed
MAX_CONSECUTIVE_FAILURES times in a row.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from riddlebridge.config import Settings
from riddlebridge.services.maintenance import BridgeMaintenance

logger = structlog.get_logger(__name__)

MAX_CONSECUTIVE_FAILURES = 10

SweepFunc = Callable[[], Awaitable[int | None]]


@dataclass
class Sweep:
    """Registration and counters of one periodic sweep."""

    name: str
    func: SweepFunc
    interval_seconds: float
    enabled: bool = True
    last_run: datetime | None = None
    runs: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    affected_total: int = 0
    last_affected: int | None = None
    last_error: str | None = None
    auto_disabled: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "runs": self.runs,
            "failures": self.failures,
            "consecutive_failures": self.consecutive_failures,
            "affected_total": self.affected_total,
            "last_affected": self.last_affected,
            "last_error": self.last_error,
            "auto_disabled": self.auto_disabled,
        }


class BackgroundScheduler:
    """
    Runs registered sweeps every ``interval_seconds`` until stopped.

    The first run of each sweep is delayed by up to ``stagger_seconds`` so
    several replicas started together do not sweep the store at once.
    """

    def __init__(self, stagger_seconds: int = 10) -> None:
        self._sweeps: dict[str, Sweep] = {}
        self._loops: dict[str, asyncio.Task[None]] = {}
        self._stopping = asyncio.Event()
        self._stagger_seconds = stagger_seconds
        self._started_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    def add_sweep(
        self, name: str, func: SweepFunc, interval_seconds: float, enabled: bool = True
    ) -> None:
        if name in self._sweeps:
            logger.warning("sweep_already_registered", sweep=name)
            return
        self._sweeps[name] = Sweep(
            name=name, func=func, interval_seconds=interval_seconds, enabled=enabled
        )
        logger.info("sweep_registered", sweep=name, interval_seconds=interval_seconds)

    async def start(self) -> None:
        if self.is_running:
            return
        self._started_at = datetime.now(UTC)
        self._stopping.clear()
        for sweep in self._sweeps.values():
            if sweep.enabled:
                self._loops[sweep.name] = asyncio.create_task(
                    self._loop(sweep), name=f"sweep_{sweep.name}"
                )
        logger.info("scheduler_started", sweeps=sorted(self._loops))

    async def stop(self) -> None:
        if not self.is_running:
            return
        self._stopping.set()
        for loop_task in self._loops.values():
            loop_task.cancel()
        await asyncio.gather(*self._loops.values(), return_exceptions=True)
        self._loops.clear()
        self._started_at = None
        logger.info("scheduler_stopped")

    async def run_now(self, name: str) -> bool:
        """Run one sweep immediately; False if it is unknown or failed."""
        sweep = self._sweeps.get(name)
        if sweep is None:
            return False
        return await self._run(sweep)

    async def _run(self, sweep: Sweep) -> bool:
        try:
            affected = await sweep.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:  # a failing sweep must not kill its loop
            sweep.failures += 1
            sweep.consecutive_failures += 1
            sweep.last_error = str(e)
            logger.error(
                "sweep_failed",
                sweep=sweep.name,
                error=str(e),
                consecutive_failures=sweep.consecutive_failures,
            )
            return False

        sweep.runs += 1
        sweep.consecutive_failures = 0
        sweep.last_run = datetime.now(UTC)
        sweep.last_affected = affected or 0
        sweep.affected_total += sweep.last_affected
        if sweep.last_affected:
            logger.info("sweep_completed", sweep=sweep.name, affected=sweep.last_affected)
        return True

    async def _loop(self, sweep: Sweep) -> None:
        if self._stagger_seconds:
            await asyncio.sleep(hash(sweep.name) % self._stagger_seconds)

        while not self._stopping.is_set():
            ok = await self._run(sweep)
            if not ok and sweep.consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                sweep.enabled = False
                sweep.auto_disabled = True
                logger.critical(
                    "sweep_auto_disabled",
                    sweep=sweep.name,
                    last_error=sweep.last_error,
                )
                return
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=sweep.interval_seconds)
            except TimeoutError:
                continue

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "sweeps": {name: sweep.as_dict() for name, sweep in self._sweeps.items()},
        }


def setup_scheduler(settings: Settings, maintenance: BridgeMaintenance) -> BackgroundScheduler:
    """Scheduler with the pending-expiry and stale-execution sweeps."""
    scheduler = BackgroundScheduler()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled")
        return scheduler

    interval = settings.maintenance_interval_seconds
    scheduler.add_sweep("expire_pending", maintenance.expire_pending, interval)
    scheduler.add_sweep(
        "interrupt_stale_executions", maintenance.interrupt_stale_executions, interval
    )
    return scheduler
