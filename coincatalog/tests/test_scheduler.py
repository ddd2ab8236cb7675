"""Scheduler tests"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from coincatalog.core.db import SessionLocal
from coincatalog.services.scheduler import SyncScheduler
from coincatalog.services.sync_service import SyncCoordinator, SyncTrigger
from coincatalog.tests.factories import FakeFeed


class RecordingCoordinator:
    """Stands in for the coordinator; records trigger sources."""

    def __init__(self, fail: bool = False):
        self.triggers = []
        self.fail = fail

    async def trigger_sync(self, trigger: str = "manual") -> SyncTrigger:
        self.triggers.append(trigger)
        if self.fail:
            raise RuntimeError("coordinator exploded")
        return SyncTrigger(message="Cryptocurrency sync started", started=True)


class TestSyncScheduler:
    """Fixed-interval triggering"""

    @pytest.mark.asyncio
    async def test_ticks_after_delay_then_every_interval(self):
        coordinator = RecordingCoordinator()
        scheduler = SyncScheduler(coordinator, interval=0.05, startup_delay=0)

        scheduler.start()
        await asyncio.sleep(0.13)
        await scheduler.stop()

        assert len(coordinator.triggers) >= 2
        assert set(coordinator.triggers) == {"scheduled"}
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_loop_alive(self):
        coordinator = RecordingCoordinator(fail=True)
        scheduler = SyncScheduler(coordinator, interval=0.02, startup_delay=0)

        scheduler.start()
        await asyncio.sleep(0.07)
        assert scheduler.running is True
        await scheduler.stop()

        assert len(coordinator.triggers) >= 2

    @pytest.mark.asyncio
    async def test_next_run_estimate(self):
        now = datetime(2026, 10, 1, 12, 17, 30, tzinfo=timezone.utc)
        scheduler = SyncScheduler(RecordingCoordinator(), interval=3600, startup_delay=30, clock=lambda: now)
        assert scheduler.next_run_estimate() is None

        scheduler.start()
        assert scheduler.next_run_estimate() == now + timedelta(seconds=30)

        await scheduler._tick()
        assert scheduler.next_run_estimate() == datetime(2026, 10, 1, 13, 0, tzinfo=timezone.utc)
        await scheduler.stop()

    def test_boundaries_follow_the_utc_clock(self):
        scheduler = SyncScheduler(RecordingCoordinator(), interval=3600, startup_delay=5)
        at = datetime(2026, 10, 1, 23, 59, 59, tzinfo=timezone.utc)
        assert scheduler.next_boundary(at) == datetime(2026, 10, 2, 0, 0, tzinfo=timezone.utc)
        on_the_hour = datetime(2026, 10, 1, 14, 0, tzinfo=timezone.utc)
        assert scheduler.next_boundary(on_the_hour) == datetime(2026, 10, 1, 15, 0, tzinfo=timezone.utc)
        quarter = SyncScheduler(RecordingCoordinator(), interval=900, startup_delay=5)
        assert quarter.next_boundary(at.replace(minute=7)) == datetime(2026, 10, 1, 23, 15, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_sleeps_until_boundary_after_startup_run(self):
        clock = {"now": datetime(2026, 10, 1, 12, 59, 40, tzinfo=timezone.utc)}
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            clock["now"] += timedelta(seconds=seconds)
            if len(sleeps) >= 3:
                raise asyncio.CancelledError

        coordinator = RecordingCoordinator()
        scheduler = SyncScheduler(
            coordinator, interval=3600, startup_delay=5, clock=lambda: clock["now"], sleep=fake_sleep
        )

        with pytest.raises(asyncio.CancelledError):
            await scheduler._loop()

        # startup run at 12:59:45, then the top of each hour
        assert sleeps == [5.0, 15.0, 3600.0]
        assert len(coordinator.triggers) == 2
        assert scheduler.last_tick_at == datetime(2026, 10, 1, 13, 0, tzinfo=timezone.utc)

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            SyncScheduler(RecordingCoordinator(), interval=0)

    @pytest.mark.asyncio
    async def test_tick_during_manual_pass_is_a_no_op(self, db_session, rows, clock):
        gate = asyncio.Event()
        feed = FakeFeed(rows, gate=gate)
        coordinator = SyncCoordinator(feed, SessionLocal, page_size=10, max_assets=20, clock=clock)
        scheduler = SyncScheduler(coordinator, interval=3600, startup_delay=3600)

        manual = await coordinator.trigger_sync("manual")
        await scheduler._tick()
        gate.set()
        await coordinator.wait_idle()

        assert manual.started is True
        assert [call[0] for call in feed.calls] == [1, 2]
