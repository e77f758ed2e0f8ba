"""APScheduler integration for the incident simulator.

Uses AsyncIOScheduler with one-shot DateTrigger jobs: the simulator re-arms a
fresh timer after every tick, so each interval is re-rolled rather than fixed.
No-ops gracefully if the simulator is disabled in settings.
"""

import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from apscheduler.job import Job  # type: ignore[import-untyped]
from apscheduler.jobstores.base import JobLookupError  # type: ignore[import-untyped]
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.schedulers.base import BaseScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.date import DateTrigger  # type: ignore[import-untyped]

from quinn.config import get_settings
from quinn.telemetry.lifecycle import IncidentController
from quinn.telemetry.simulator import IncidentSimulator
from quinn.telemetry.store import TelemetryStore

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None
_simulator: IncidentSimulator | None = None


class _JobHandle:
    def __init__(self, job: Job) -> None:
        self._job = job

    def cancel(self) -> None:
        # Already fired (and removed) one-shot jobs raise JobLookupError.
        with contextlib.suppress(JobLookupError):
            self._job.remove()


class APSchedulerTimers:
    """Single-shot timers backed by an APScheduler scheduler."""

    def __init__(self, scheduler: BaseScheduler) -> None:
        self._scheduler = scheduler

    def call_later(self, delay: float, callback: Callable[[], None]) -> _JobHandle:
        # AsyncIOScheduler runs plain functions in a thread pool; a coroutine
        # job keeps the tick on the event loop with the API handlers.
        async def _simulator_tick_job() -> None:
            callback()

        run_date = datetime.now(UTC) + timedelta(seconds=delay)
        job = self._scheduler.add_job(
            _simulator_tick_job,
            trigger=DateTrigger(run_date=run_date),
            id=f"quinn_sim_{uuid4().hex[:8]}",
            name="Quinn incident simulator tick",
            misfire_grace_time=None,
        )
        return _JobHandle(job)


def start_simulator(store: TelemetryStore, controller: IncidentController) -> IncidentSimulator | None:
    """Start the scheduler and the simulator if the simulator is enabled."""
    global _scheduler, _simulator  # noqa: PLW0603

    settings = get_settings()
    if not settings.simulator_enabled:
        logger.info("Incident simulator disabled (SIMULATOR_ENABLED=false)")
        return None

    _scheduler = AsyncIOScheduler()
    _scheduler.start()
    _simulator = IncidentSimulator(
        store,
        controller,
        APSchedulerTimers(_scheduler),
        initial_delay=(settings.simulator_initial_delay_min, settings.simulator_initial_delay_max),
        interval=(settings.simulator_interval_min, settings.simulator_interval_max),
        auto_resolve_after_seconds=settings.simulator_auto_resolve_after_seconds,
        auto_resolve_probability=settings.simulator_auto_resolve_probability,
    )
    _simulator.start()
    return _simulator


def stop_simulator() -> None:
    """Cancel pending ticks and shut the scheduler down if it is running."""
    global _scheduler, _simulator  # noqa: PLW0603

    if _simulator is not None:
        _simulator.stop()
        _simulator = None
    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Simulator scheduler stopped")
        _scheduler = None
