"""
scheduler.py — Periodic triggers for the cleanup engine.

Runs as asyncio tasks inside the API process, started and stopped by the
FastAPI lifespan in main.py:

  daily   DAILY_CLEANUP_HOUR_UTC            run_full_cleanup() + duplicate-active consistency check
  weekly  WEEKLY_ORPHAN_SCAN_WEEKDAY/_HOUR  cleanup_orphaned_files()
  sweep   on start, then every RETENTION_SWEEP_INTERVAL_HOURS
                                            cleanup_expired_sessions()

Scheduled ticks log and swallow failures so the loop keeps going;
run_manual() is for operators and lets errors propagate.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from studytrack.retention.cleanup import CleanupEngine, FullCleanupResult
from studytrack.sessions.service import reconcile_all_users

logger = logging.getLogger(__name__)


def seconds_until_next(now: datetime, hour: int, weekday: Optional[int] = None) -> float:
    """
    Seconds from `now` until the next hh:00 UTC (strictly in the future),
    optionally restricted to a weekday (Monday=0 … Sunday=6).
    """
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if weekday is not None:
        candidate += timedelta(days=(weekday - candidate.weekday()) % 7)
    if candidate <= now:
        candidate += timedelta(days=7 if weekday is not None else 1)
    return (candidate - now).total_seconds()


class CleanupScheduler:
    """Owns the background tasks that invoke the cleanup engine."""

    def __init__(
        self,
        engine: CleanupEngine,
        session_factory: async_sessionmaker,
        daily_hour_utc: int = 2,
        weekly_weekday: int = 6,
        weekly_hour_utc: int = 3,
        sweep_interval_hours: float = 24,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.engine = engine
        self.session_factory = session_factory
        self.daily_hour_utc = daily_hour_utc
        self.weekly_weekday = weekly_weekday
        self.weekly_hour_utc = weekly_hour_utc
        self.sweep_interval_hours = sweep_interval_hours
        self.clock = clock
        self._tasks: list[asyncio.Task] = []
        self.last_runs: dict[str, datetime] = {}

    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.is_running():
            logger.warning("CleanupScheduler already running")
            return
        self._tasks = [
            asyncio.create_task(self._loop("retention-sweep", self._sweep_delay, self._sweep, run_first=True)),
            asyncio.create_task(self._loop("daily-cleanup", self._daily_delay, self._daily)),
            asyncio.create_task(self._loop("weekly-orphan-scan", self._weekly_delay, self._weekly)),
        ]
        logger.info(
            "CleanupScheduler started (daily %02d:00 UTC, weekly day=%d %02d:00 UTC, sweep every %sh)",
            self.daily_hour_utc, self.weekly_weekday, self.weekly_hour_utc, self.sweep_interval_hours,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("CleanupScheduler stopped")

    async def run_manual(self) -> FullCleanupResult:
        logger.info("Manual full cleanup triggered")
        return await self.engine.run_full_cleanup()

    # ------------------------------------------------------------------
    # Delays
    # ------------------------------------------------------------------

    def _sweep_delay(self) -> float:
        return self.sweep_interval_hours * 3600

    def _daily_delay(self) -> float:
        return seconds_until_next(self.clock(), self.daily_hour_utc)

    def _weekly_delay(self) -> float:
        return seconds_until_next(self.clock(), self.weekly_hour_utc, self.weekly_weekday)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def _sweep(self) -> None:
        await self.engine.cleanup_expired_sessions()

    async def _daily(self) -> None:
        await self.engine.run_full_cleanup()
        await reconcile_all_users(self.session_factory)

    async def _weekly(self) -> None:
        await self.engine.cleanup_orphaned_files()

    async def _loop(
        self,
        name: str,
        delay: Callable[[], float],
        job: Callable[[], Awaitable[None]],
        run_first: bool = False,
    ) -> None:
        if not run_first:
            await asyncio.sleep(delay())
        while True:
            logger.info("Running scheduled job=%s", name)
            try:
                await job()
                self.last_runs[name] = self.clock()
            except Exception:
                logger.error("Scheduled job=%s failed", name, exc_info=True)
            await asyncio.sleep(delay())
