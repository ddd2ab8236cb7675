"""Wall-clock aligned trigger for the sync coordinator."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from coincatalog.core.config import settings
from coincatalog.core.logging import get_logger
from coincatalog.services.sync_service import SyncCoordinator

log = get_logger("scheduler")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncScheduler:
    """Fires ``trigger_sync`` once shortly after start, then on every
    multiple of ``interval`` on the UTC clock (top of the hour by default).

    Overlap is not its concern: a tick that lands while a pass is still
    running is turned into a no-op by the coordinator.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        interval: Optional[float] = None,
        startup_delay: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.coordinator = coordinator
        self.interval = float(interval if interval is not None else settings.SYNC_INTERVAL_SECONDS)
        if self.interval <= 0:
            raise ValueError("interval must be positive")
        self.startup_delay = float(startup_delay if startup_delay is not None else settings.SYNC_STARTUP_DELAY_SECONDS)
        self._clock = clock
        self._sleep = sleep
        self.started_at: Optional[datetime] = None
        self.last_tick_at: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self.started_at = self._clock()
        self._task = asyncio.create_task(self._loop(), name="coincatalog-sync-scheduler")
        log.info(f"Sync scheduler started (first run in {self.startup_delay}s, then every {self.interval}s on the clock)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log.info("Sync scheduler stopped")

    def next_boundary(self, after: datetime) -> datetime:
        """First multiple of ``interval`` since the epoch strictly after ``after``."""
        ts = after.timestamp()
        return datetime.fromtimestamp(ts - ts % self.interval + self.interval, tz=timezone.utc)

    def next_run_estimate(self) -> Optional[datetime]:
        """Next aligned boundary after the last tick, or start + startup delay before the first tick."""
        if self.last_tick_at is not None:
            return self.next_boundary(self.last_tick_at)
        if self.started_at is not None:
            return self.started_at + timedelta(seconds=self.startup_delay)
        return None

    async def _tick(self) -> None:
        self.last_tick_at = self._clock()
        try:
            await self.coordinator.trigger_sync("scheduled")
        except Exception as exc:  # noqa: BLE001
            log.exception(f"Scheduled sync trigger failed: {exc}")

    async def _sleep_until(self, due: datetime) -> None:
        # re-check after waking: the event loop clock and the wall clock can drift apart
        while True:
            remaining = (due - self._clock()).total_seconds()
            if remaining <= 0:
                return
            await self._sleep(remaining)

    async def _loop(self) -> None:
        try:
            await self._sleep(self.startup_delay)
            while True:
                await self._tick()
                await self._sleep_until(self.next_boundary(self.last_tick_at))
        except asyncio.CancelledError:
            log.info("Sync scheduler loop cancelled")
            raise
