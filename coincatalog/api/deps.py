"""API dependencies"""

from typing import Generator, Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from coincatalog.core.db import SessionLocal
from coincatalog.services.market_service import MarketService
from coincatalog.services.scheduler import SyncScheduler
from coincatalog.services.sync_service import SyncCoordinator, get_sync_coordinator
from coincatalog.store.catalog import CatalogStore


def get_db() -> Generator[Session, None, None]:
    """One session per request, closed when the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_coordinator() -> SyncCoordinator:
    coordinator = get_sync_coordinator()
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Sync coordinator is not running")
    return coordinator


def get_scheduler(request: Request) -> Optional[SyncScheduler]:
    return getattr(request.app.state, "scheduler", None)


def get_market_service(
    request: Request,
    db: Session = Depends(get_db),
) -> MarketService:
    return MarketService(
        CatalogStore(db),
        coordinator=get_sync_coordinator(),
        scheduler=get_scheduler(request),
    )
