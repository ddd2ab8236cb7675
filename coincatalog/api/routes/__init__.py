from coincatalog.api.routes.cryptocurrencies import router as cryptocurrencies_router
from coincatalog.api.routes.health import router as health_router
from coincatalog.api.routes.stats import router as stats_router
from coincatalog.api.routes.sync import router as sync_router

__all__ = ["cryptocurrencies_router", "health_router", "stats_router", "sync_router"]
