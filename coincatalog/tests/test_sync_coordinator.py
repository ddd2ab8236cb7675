"""Sync coordinator tests - single-flight, idempotence and failure accounting"""

import asyncio

import httpx
import pytest
from sqlalchemy import select

from coincatalog.core.db import SessionLocal
from coincatalog.models.runs import SyncRun
from coincatalog.services.sync_service import SyncCoordinator, SyncPhase
from coincatalog.store.catalog import CatalogStore
from coincatalog.tests.factories import FakeFeed, Recorder, make_feed, market_rows, paged_responder


def make_coordinator(feed, clock, page_size=5, max_assets=20):
    return SyncCoordinator(
        feed,
        SessionLocal,
        page_size=page_size,
        max_assets=max_assets,
        data_source_label="Test Feed",
        clock=clock,
    )


def catalog_count() -> int:
    with SessionLocal() as session:
        return CatalogStore(session).count()


class TestSyncPass:
    """A full reconciliation pass"""

    @pytest.mark.asyncio
    async def test_pass_applies_all_pages(self, db_session, rows, clock):
        feed = FakeFeed(rows)
        coordinator = make_coordinator(feed, clock)

        result = await coordinator.run_sync("manual")

        assert result.status == "success"
        assert result.pages_fetched == 4
        assert result.records_processed == 20
        assert result.inserted_count == 20
        assert catalog_count() == 20
        assert [call[0] for call in feed.calls] == [1, 2, 3, 4]

        state = coordinator.state
        assert state.phase is SyncPhase.IDLE
        assert state.last_completed_at is not None
        assert state.consecutive_error_count == 0
        assert state.data_source_label == "Test Feed"

    @pytest.mark.asyncio
    async def test_pass_stops_at_asset_cap(self, db_session, rows, clock):
        coordinator = make_coordinator(FakeFeed(rows), clock, page_size=4, max_assets=10)

        result = await coordinator.run_sync()

        assert result.records_processed == 10
        assert catalog_count() == 10

    @pytest.mark.asyncio
    async def test_short_page_ends_pass(self, db_session, rows, clock):
        feed = FakeFeed(rows[:7])
        coordinator = make_coordinator(feed, clock)

        result = await coordinator.run_sync()

        assert result.pages_fetched == 2
        assert len(feed.calls) == 2

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, db_session, rows, clock):
        coordinator = make_coordinator(FakeFeed(rows), clock)
        await coordinator.run_sync()
        with SessionLocal() as session:
            before = CatalogStore(session).find_by_key("bitcoin")

        result = await coordinator.run_sync()

        assert result.inserted_count == 0
        assert result.updated_count == 20
        assert catalog_count() == 20
        with SessionLocal() as session:
            after = CatalogStore(session).find_by_key("bitcoin")
        assert after.id == before.id
        assert after.current_price == before.current_price
        assert after.updated_at == before.updated_at
        assert after.last_synced_at > before.last_synced_at

    @pytest.mark.asyncio
    async def test_run_is_recorded(self, db_session, rows, clock):
        coordinator = make_coordinator(FakeFeed(rows), clock)
        await coordinator.run_sync("cli")

        with SessionLocal() as session:
            runs = session.execute(select(SyncRun)).scalars().all()
        assert len(runs) == 1
        assert runs[0].trigger == "cli"
        assert runs[0].status == "success"
        assert runs[0].records_processed == 20
        assert runs[0].ended_at is not None


class TestSingleFlight:
    """At most one pass in flight"""

    @pytest.mark.asyncio
    async def test_concurrent_triggers_start_exactly_one_pass(self, db_session, rows, clock):
        gate = asyncio.Event()
        feed = FakeFeed(rows, gate=gate)
        coordinator = make_coordinator(feed, clock)

        outcomes = await asyncio.gather(*(coordinator.trigger_sync("manual") for _ in range(5)))

        assert sum(1 for o in outcomes if o.started) == 1
        assert {o.message for o in outcomes if not o.started} == {"Cryptocurrency sync already in progress"}
        assert coordinator.state.in_progress is True

        gate.set()
        await coordinator.wait_idle()

        assert coordinator.state.phase is SyncPhase.IDLE
        assert len(feed.calls) == 4

    @pytest.mark.asyncio
    async def test_run_sync_returns_none_while_busy(self, db_session, rows, clock):
        gate = asyncio.Event()
        coordinator = make_coordinator(FakeFeed(rows, gate=gate), clock)

        started = await coordinator.trigger_sync("scheduled")
        assert started.started is True
        assert await coordinator.run_sync("cli") is None

        gate.set()
        await coordinator.wait_idle()

    @pytest.mark.asyncio
    async def test_new_pass_allowed_after_completion(self, db_session, rows, clock):
        coordinator = make_coordinator(FakeFeed(rows), clock)
        first = await coordinator.trigger_sync()
        await coordinator.wait_idle()
        second = await coordinator.trigger_sync()
        await coordinator.wait_idle()

        assert first.started and second.started


class TestFailureAccounting:
    """Error streak and phase after failed or empty passes"""

    @pytest.mark.asyncio
    async def test_failure_mid_pass_keeps_committed_pages(self, db_session, rows, clock):
        coordinator = make_coordinator(FakeFeed(rows, fail_on_page=3), clock)

        result = await coordinator.run_sync()

        assert result.status == "failure"
        assert result.records_processed == 10
        assert catalog_count() == 10

        state = coordinator.state
        assert state.phase is SyncPhase.IDLE
        assert state.consecutive_error_count == 1
        assert "FeedUnavailable" in state.last_error
        assert state.last_completed_at is None

    @pytest.mark.asyncio
    async def test_each_failure_increments_once(self, db_session, rows, clock):
        coordinator = make_coordinator(FakeFeed(rows, fail_on_page=1), clock)
        for _ in range(3):
            await coordinator.run_sync()
        assert coordinator.state.consecutive_error_count == 3

    @pytest.mark.asyncio
    async def test_success_resets_error_streak(self, db_session, rows, clock):
        feed = FakeFeed(rows, fail_on_page=1)
        coordinator = make_coordinator(feed, clock)
        await coordinator.run_sync()
        await coordinator.run_sync()

        feed.fail_on_page = None
        await coordinator.run_sync()

        state = coordinator.state
        assert state.consecutive_error_count == 0
        assert state.last_error is None

    @pytest.mark.asyncio
    async def test_empty_feed_leaves_error_streak(self, db_session, rows, clock):
        feed = FakeFeed(rows, fail_on_page=1)
        coordinator = make_coordinator(feed, clock)
        await coordinator.run_sync()
        await coordinator.run_sync()

        feed.fail_on_page = None
        feed.rows = []
        result = await coordinator.run_sync()

        assert result.status == "success"
        assert result.records_processed == 0
        state = coordinator.state
        assert state.consecutive_error_count == 2
        assert state.last_completed_at is not None

    @pytest.mark.asyncio
    async def test_last_completed_at_never_moves_backwards(self, db_session, rows, clock):
        coordinator = make_coordinator(FakeFeed(rows), clock)
        await coordinator.run_sync()
        first = coordinator.state.last_completed_at

        await coordinator.run_sync()

        assert coordinator.state.last_completed_at > first

    def test_illegal_transition_rejected(self, clock):
        coordinator = make_coordinator(FakeFeed([]), clock)
        with pytest.raises(RuntimeError):
            coordinator._transition(SyncPhase.COMPLETED)


class TestShutdown:
    """Graceful stop of an in-flight pass"""

    @pytest.mark.asyncio
    async def test_shutdown_finishes_current_page_and_skips_rest(self, db_session, rows, clock):
        gate = asyncio.Event()
        feed = FakeFeed(rows, gate=gate)
        coordinator = make_coordinator(feed, clock)
        await coordinator.trigger_sync()
        while not feed.calls:
            await asyncio.sleep(0)

        stopping = asyncio.create_task(coordinator.shutdown(grace=5))
        await asyncio.sleep(0)
        gate.set()
        await stopping

        state = coordinator.state
        assert state.phase is SyncPhase.IDLE
        assert state.consecutive_error_count == 0
        assert catalog_count() == 5

    @pytest.mark.asyncio
    async def test_shutdown_cancels_after_grace(self, db_session, rows, clock):
        coordinator = make_coordinator(FakeFeed(rows, gate=asyncio.Event()), clock)
        await coordinator.trigger_sync()
        await asyncio.sleep(0)

        await coordinator.shutdown(grace=0.05)

        state = coordinator.state
        assert state.phase is SyncPhase.IDLE
        assert state.consecutive_error_count == 0
        assert state.last_error == "Sync cancelled"
        with SessionLocal() as session:
            run = session.execute(select(SyncRun)).scalar_one()
        assert run.status == "cancelled"


class TestRestore:
    """State rebuilt from run history"""

    def test_restore_counts_trailing_failures(self, db_session, clock):
        history = [("success", clock()), ("failure", clock()), ("failure", clock()), ("running", clock())]
        for status, started_at in history:
            db_session.add(SyncRun(trigger="scheduled", status=status, started_at=started_at, ended_at=started_at))
        db_session.commit()
        success_ended_at = history[0][1]

        coordinator = make_coordinator(FakeFeed([]), clock)
        assert coordinator.close_stale_runs() == 1
        coordinator.restore()

        state = coordinator.state
        assert state.consecutive_error_count == 3
        assert state.last_completed_at == success_ended_at
        with SessionLocal() as session:
            statuses = session.execute(select(SyncRun.status)).scalars().all()
        assert "running" not in statuses

    def test_restore_on_empty_history(self, db_session, clock):
        coordinator = make_coordinator(FakeFeed([]), clock)
        coordinator.restore()
        assert coordinator.state.consecutive_error_count == 0
        assert coordinator.state.last_completed_at is None

    def test_restore_leaves_running_passes_alone(self, db_session, clock):
        db_session.add(SyncRun(trigger="scheduled", status="failure", started_at=clock(), ended_at=clock()))
        db_session.add(SyncRun(trigger="scheduled", status="running", started_at=clock()))
        db_session.commit()

        coordinator = make_coordinator(FakeFeed([]), clock)
        coordinator.restore()

        assert coordinator.state.consecutive_error_count == 1
        with SessionLocal() as session:
            statuses = sorted(session.execute(select(SyncRun.status)).scalars().all())
        assert statuses == ["failure", "running"]


class TestPassOverCoinGecko:
    """Coordinator driving the real feed client over a mock transport"""

    @pytest.mark.asyncio
    async def test_invalid_row_does_not_end_the_pass(self, db_session, clock):
        rows = market_rows(10)
        rows[1]["name"] = ""
        recorder = Recorder([paged_responder(rows)])
        coordinator = make_coordinator(make_feed(recorder), clock, page_size=5, max_assets=10)

        result = await coordinator.run_sync()

        assert result.status == "success"
        assert result.pages_fetched == 2
        assert result.records_processed == 9
        assert catalog_count() == 9
        assert [r.url.params["page"] for r in recorder.requests] == ["1", "2"]
        with SessionLocal() as session:
            assert CatalogStore(session).find_by_key("ethereum") is None

    @pytest.mark.asyncio
    async def test_feed_end_stops_the_pass(self, db_session, clock):
        recorder = Recorder([paged_responder(market_rows(10))])
        coordinator = make_coordinator(make_feed(recorder), clock, page_size=5, max_assets=20)

        result = await coordinator.run_sync()

        assert result.status == "success"
        assert result.records_processed == 10
        assert [r.url.params["page"] for r in recorder.requests] == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_repeated_timeouts_fail_the_pass_once(self, db_session, clock):
        recorder = Recorder([httpx.ConnectTimeout("timed out")])
        coordinator = make_coordinator(make_feed(recorder), clock)

        result = await coordinator.run_sync()

        assert result.status == "failure"
        assert len(recorder.requests) == 3
        assert recorder.sleeps == [2.0, 4.0]
        state = coordinator.state
        assert state.phase is SyncPhase.IDLE
        assert state.consecutive_error_count == 1
        assert "FeedTimeout" in state.last_error
        assert catalog_count() == 0
