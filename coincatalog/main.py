from pathlib import Path
from contextlib import asynccontextmanager

from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from coincatalog.api.errors import register_exception_handlers
from coincatalog.api.routes import cryptocurrencies, health, stats, sync
from coincatalog.core.config import settings
from coincatalog.core.db import SessionLocal
from coincatalog.core.logging import get_logger
from coincatalog.ingestion.coingecko import CoinGeckoFeed
from coincatalog.services.scheduler import SyncScheduler
from coincatalog.services.sync_service import init_sync_coordinator, shutdown_sync_coordinator


log = get_logger("coincatalog")


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    coordinator = init_sync_coordinator(CoinGeckoFeed(), SessionLocal)
    try:
        coordinator.close_stale_runs()
        coordinator.restore()
    except Exception as exc:  # noqa: BLE001
        log.warning(f"Could not restore sync state from history (starting fresh): {exc}")

    app.state.scheduler = None
    if settings.SYNC_ENABLED:
        log.info("Starting sync scheduler...")
        app.state.scheduler = SyncScheduler(coordinator)
        app.state.scheduler.start()
    else:
        log.info("Scheduled sync is disabled (SYNC_ENABLED=false)")

    yield

    # Shutdown
    log.info("Shutting down services...")
    if app.state.scheduler:
        await app.state.scheduler.stop()
        app.state.scheduler = None

    # Lets the current page finish, skips the rest
    await shutdown_sync_coordinator()

    log.info("Application shutdown complete")


app = FastAPI(
    title="Crypto Market Catalog",
    description="Cryptocurrency market-data catalog synchronized from CoinGecko",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production for security
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    debug=settings.debug_enabled,
)

register_exception_handlers(app)

# sync routes first so /cryptocurrencies/sync-status is not captured by /{asset_id}
app.include_router(sync.router)
app.include_router(cryptocurrencies.router)
app.include_router(health.router)
app.include_router(stats.router)
