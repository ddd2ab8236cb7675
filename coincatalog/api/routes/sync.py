"""Sync routes - manual trigger and status of the market-data synchronization."""

from fastapi import APIRouter, Depends

from coincatalog.api.deps import get_coordinator, get_market_service
from coincatalog.core.logging import get_logger
from coincatalog.schemas.api import SyncStatusResponse, SyncTriggerResponse
from coincatalog.services.market_service import MarketService
from coincatalog.services.sync_service import SyncCoordinator

router = APIRouter(prefix="/cryptocurrencies", tags=["sync"])
log = get_logger("sync_routes")


@router.post("/sync", response_model=SyncTriggerResponse)
async def trigger_sync(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """
    Start a synchronization pass in the background.

    Returns immediately. ``started`` is false when a pass is already running;
    the outcome of the pass is visible through ``/cryptocurrencies/sync-status``.
    """
    log.info("Manual sync requested")
    outcome = await coordinator.trigger_sync("manual")
    return SyncTriggerResponse(message=outcome.message, started=outcome.started)


@router.get("/sync-status", response_model=SyncStatusResponse)
def get_sync_status(service: MarketService = Depends(get_market_service)):
    """Current sync phase, last completion, error streak and next scheduled run."""
    return service.sync_status()
