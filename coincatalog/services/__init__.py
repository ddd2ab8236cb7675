# Services package
from coincatalog.services.market_service import MarketService
from coincatalog.services.scheduler import SyncScheduler
from coincatalog.services.sync_service import (
    SyncCoordinator,
    SyncPhase,
    SyncState,
    get_sync_coordinator,
    init_sync_coordinator,
    shutdown_sync_coordinator,
)

__all__ = [
    "MarketService",
    "SyncScheduler",
    "SyncCoordinator",
    "SyncPhase",
    "SyncState",
    "get_sync_coordinator",
    "init_sync_coordinator",
    "shutdown_sync_coordinator",
]
