"""Stats routes - sync run history for observability."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from coincatalog.api.deps import get_db
from coincatalog.models.runs import SyncRun
from coincatalog.schemas.api import SyncRunOut

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=list[SyncRunOut])
def get_sync_runs(
    trigger: Optional[str] = Query(None, description="Filter by trigger (scheduled, manual, cli)"),
    status: Optional[str] = Query(None, description="Filter by status (running, success, failure, cancelled)"),
    limit: int = Query(10, ge=1, le=50, description="Number of runs to return"),
    db: Session = Depends(get_db),
):
    """
    Recent sync passes, newest first.

    Shows pages fetched, inserted/updated counts, status and error messages.
    """
    stmt = select(SyncRun)
    if trigger:
        stmt = stmt.where(SyncRun.trigger == trigger)
    if status:
        stmt = stmt.where(SyncRun.status == status)
    stmt = stmt.order_by(SyncRun.started_at.desc()).limit(limit)

    return [SyncRunOut.model_validate(run) for run in db.execute(stmt).scalars().all()]
