"""Sync coordinator - single-flight reconciliation of the price feed into the catalog.

One pass walks feed pages sequentially (fetch -> normalize -> upsert by
external_id -> commit per page) and keeps ``SyncState`` accurate. Scheduled
and manual triggers share the same ``_begin`` transition, so at most one pass
is ever in flight.
"""

from __future__ import annotations

import asyncio
import enum
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coincatalog.core.config import settings
from coincatalog.core.logging import get_logger
from coincatalog.ingestion.base import BaseFeed
from coincatalog.models.runs import SyncRun
from coincatalog.schemas.feed import FeedAsset
from coincatalog.store.catalog import CatalogStore, UpsertOutcome

log = get_logger("sync_service")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncPhase(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    SyncPhase.IDLE: {SyncPhase.RUNNING},
    SyncPhase.RUNNING: {SyncPhase.COMPLETED, SyncPhase.FAILED},
    SyncPhase.COMPLETED: {SyncPhase.IDLE},
    SyncPhase.FAILED: {SyncPhase.IDLE},
}


@dataclass
class SyncState:
    """Process-wide synchronization health. Only the coordinator mutates it."""

    data_source_label: str
    phase: SyncPhase = SyncPhase.IDLE
    last_started_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    consecutive_error_count: int = 0
    last_error: Optional[str] = None

    @property
    def in_progress(self) -> bool:
        return self.phase is SyncPhase.RUNNING


@dataclass
class SyncTrigger:
    message: str
    started: bool


@dataclass
class SyncResult:
    trigger: str
    status: str = "running"  # running | success | failure | cancelled
    pages_fetched: int = 0
    records_processed: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    error: Optional[str] = None
    stopped: bool = False


class SyncCoordinator:
    """Runs exactly one reconciliation pass at a time.

    State machine: ``idle -> running -> {completed | failed} -> idle``. The
    idle->running check-and-set happens under a single mutex; a trigger that
    loses the race is a reported no-op, never queued.
    """

    def __init__(
        self,
        feed: BaseFeed,
        session_factory: Callable[[], Session],
        page_size: Optional[int] = None,
        max_assets: Optional[int] = None,
        data_source_label: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.feed = feed
        self.session_factory = session_factory
        self.max_assets = max_assets if max_assets is not None else settings.FEED_MAX_ASSETS
        self.page_size = max(1, min(page_size or settings.feed_page_size, self.max_assets))
        self._clock = clock
        self._state = SyncState(data_source_label=data_source_label or settings.SYNC_DATA_SOURCE_LABEL)
        self._mutex = threading.Lock()
        self._stop_requested = False
        self._task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------
    @property
    def state(self) -> SyncState:
        """Snapshot of the current state; mutating it has no effect."""
        with self._mutex:
            return replace(self._state)

    def _transition(self, target: SyncPhase) -> None:
        if target not in _TRANSITIONS[self._state.phase]:
            raise RuntimeError(f"Illegal sync transition {self._state.phase.value} -> {target.value}")
        self._state.phase = target

    def _begin(self) -> bool:
        with self._mutex:
            if self._state.in_progress:
                return False
            self._transition(SyncPhase.RUNNING)
            self._state.last_started_at = self._clock()
            self._stop_requested = False
            return True

    def _finish(self, result: SyncResult) -> None:
        with self._mutex:
            if result.status == "success":
                self._transition(SyncPhase.COMPLETED)
                now = self._clock()
                last = self._state.last_completed_at
                if last is None or now > last:
                    self._state.last_completed_at = now
                # a pass that found an empty feed leaves the error streak alone
                if result.records_processed:
                    self._state.consecutive_error_count = 0
                    self._state.last_error = None
            else:
                self._transition(SyncPhase.FAILED)
                self._state.last_error = result.error
                if result.status == "failure":
                    self._state.consecutive_error_count += 1
            self._transition(SyncPhase.IDLE)

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------
    async def trigger_sync(self, trigger: str = "manual") -> SyncTrigger:
        """Start a pass in the background unless one is already running."""
        if not self._begin():
            log.info(f"Sync trigger ({trigger}) ignored: already in progress")
            return SyncTrigger(message="Cryptocurrency sync already in progress", started=False)

        self._task = asyncio.create_task(self._execute(trigger), name=f"coincatalog-sync-{trigger}")
        log.info(f"Sync pass started ({trigger})")
        return SyncTrigger(message="Cryptocurrency sync started", started=True)

    async def run_sync(self, trigger: str = "cli") -> Optional[SyncResult]:
        """Run a pass to completion in the caller's task; ``None`` if one is running."""
        if not self._begin():
            log.info(f"Sync run ({trigger}) skipped: already in progress")
            return None
        return await self._execute(trigger)

    async def wait_idle(self) -> None:
        """Wait for the background pass started by ``trigger_sync`` (tests, shutdown)."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def shutdown(self, grace: Optional[float] = None) -> None:
        """Let the current page finish, skip the rest, cancel after ``grace`` seconds."""
        task = self._task
        if task is None or task.done():
            return

        grace = settings.SYNC_SHUTDOWN_GRACE_SECONDS if grace is None else grace
        self._stop_requested = True
        log.info(f"Stopping sync pass (grace {grace}s)")
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace)
        except asyncio.TimeoutError:
            log.warning("Sync pass did not stop within grace period; cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # -------------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------------
    async def _execute(self, trigger: str) -> SyncResult:
        result = SyncResult(trigger=trigger)
        run_id: Optional[uuid.UUID] = None
        try:
            run_id = self._open_run(trigger)
            await self._run_pass(result)
            result.status = "cancelled" if result.stopped else "success"
            if result.stopped:
                result.error = "Sync stopped by shutdown before the last page"
        except asyncio.CancelledError:
            result.status = "cancelled"
            result.error = "Sync cancelled"
            raise
        except Exception as exc:  # noqa: BLE001
            result.status = "failure"
            result.error = f"{type(exc).__name__}: {exc}"
            log.error(
                f"Sync pass failed after {result.pages_fetched} pages "
                f"({result.records_processed} records applied): {result.error}"
            )
        finally:
            if run_id is not None:
                self._close_run(run_id, result)
            self._finish(result)

        log.info(
            f"Sync pass {result.status} | pages={result.pages_fetched} processed={result.records_processed} "
            f"inserted={result.inserted_count} updated={result.updated_count}"
        )
        return result

    async def _run_pass(self, result: SyncResult) -> None:
        # the cap counts feed positions, so skipped rows still use up a slot
        page = 0
        consumed = 0
        while consumed < self.max_assets:
            if self._stop_requested:
                log.warning("Shutdown requested; skipping remaining feed pages")
                result.stopped = True
                return

            page += 1
            feed_page = await self.feed.fetch_page(page, self.page_size)
            if feed_page.exhausted:
                log.info(f"Feed page {page} is empty; ending pass")
                return
            result.pages_fetched += 1
            if len(feed_page.assets) < feed_page.raw_count:
                log.warning(f"Feed page {page}: {feed_page.raw_count - len(feed_page.assets)} invalid rows skipped")

            remaining = self.max_assets - consumed
            self._apply_page(feed_page.assets[:remaining], result)
            consumed += feed_page.raw_count

            if feed_page.raw_count < self.page_size:
                return

    def _apply_page(self, assets: List[FeedAsset], result: SyncResult) -> None:
        synced_at = self._clock()
        with self.session_factory() as session:
            store = CatalogStore(session)
            inserted = updated = 0
            for asset in assets:
                outcome = store.upsert(asset.external_id, asset.to_fields(), synced_at).outcome
                if outcome is UpsertOutcome.INSERTED:
                    inserted += 1
                else:
                    updated += 1
            store.commit()

        result.records_processed += len(assets)
        result.inserted_count += inserted
        result.updated_count += updated
        log.debug(f"Applied page: inserted={inserted} updated={updated}")

    # -------------------------------------------------------------------------
    # Run history
    # -------------------------------------------------------------------------
    def _open_run(self, trigger: str) -> uuid.UUID:
        with self.session_factory() as session:
            run = SyncRun(trigger=trigger, status="running", started_at=self._clock())
            session.add(run)
            session.commit()
            return run.run_id

    def _close_run(self, run_id: uuid.UUID, result: SyncResult) -> None:
        try:
            with self.session_factory() as session:
                run = session.get(SyncRun, run_id)
                if run is None:
                    return
                run.status = result.status
                run.pages_fetched = result.pages_fetched
                run.records_processed = result.records_processed
                run.inserted_count = result.inserted_count
                run.updated_count = result.updated_count
                run.error_message = result.error
                run.ended_at = self._clock()
                session.commit()
        except SQLAlchemyError as exc:
            log.error(f"Could not record sync run {run_id}: {exc}")

    def close_stale_runs(self) -> int:
        """Close runs left in ``running`` by a crashed server as failures.

        Server startup only: a one-off CLI process must not touch a pass the
        API process may still have in flight.
        """
        with self.session_factory() as session:
            stale = session.execute(select(SyncRun).where(SyncRun.status == "running")).scalars().all()
            for run in stale:
                run.status = "failure"
                run.error_message = "Interrupted by process restart"
                run.ended_at = run.ended_at or self._clock()
            if stale:
                session.commit()
                log.warning(f"Closed {len(stale)} interrupted sync runs")
        return len(stale)

    def restore(self) -> None:
        """Rebuild health counters from the run history. Read-only.

        Runs still ``running`` are neither successes nor failures and are
        skipped.
        """
        with self.session_factory() as session:
            runs = session.execute(
                select(SyncRun).order_by(SyncRun.started_at.desc()).limit(100)
            ).scalars().all()

        errors = 0
        last_completed: Optional[datetime] = None
        for run in runs:
            if run.status == "success":
                last_completed = run.ended_at
                break
            if run.status == "failure":
                errors += 1

        with self._mutex:
            self._state.consecutive_error_count = errors
            if last_completed is not None:
                if last_completed.tzinfo is None:
                    last_completed = last_completed.replace(tzinfo=timezone.utc)
                self._state.last_completed_at = last_completed
        log.info(f"Sync state restored | last_completed_at={last_completed} consecutive_errors={errors}")


# Global instance holder for the coordinator
_sync_coordinator: Optional[SyncCoordinator] = None


def init_sync_coordinator(feed: BaseFeed, session_factory: Callable[[], Session], **kwargs) -> SyncCoordinator:
    """Create the process-wide coordinator. Called once at application startup."""
    global _sync_coordinator
    _sync_coordinator = SyncCoordinator(feed, session_factory, **kwargs)
    return _sync_coordinator


def get_sync_coordinator() -> Optional[SyncCoordinator]:
    """Get the global sync coordinator instance."""
    return _sync_coordinator


async def shutdown_sync_coordinator() -> None:
    """Stop any in-flight pass and drop the global instance."""
    global _sync_coordinator
    if _sync_coordinator:
        await _sync_coordinator.shutdown()
        _sync_coordinator = None
