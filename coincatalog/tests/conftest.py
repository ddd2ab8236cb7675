import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SYNC_ENABLED", "false")

import pytest  # noqa: E402

from coincatalog.core.db import SessionLocal, engine  # noqa: E402
from coincatalog.models import Base  # noqa: E402
from coincatalog.services import sync_service  # noqa: E402
from coincatalog.store.catalog import CatalogStore  # noqa: E402
from coincatalog.schemas.feed import FeedAsset  # noqa: E402
from coincatalog.tests.factories import SteppingClock, market_rows  # noqa: E402


@pytest.fixture
def db_session():
    """Fresh schema on the shared in-memory engine."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def rows():
    return market_rows(20)


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def seeded(db_session, rows, clock):
    """Catalog holding the 20 fixture assets."""
    store = CatalogStore(db_session)
    synced_at = clock()
    for row in rows:
        asset = FeedAsset.model_validate(row)
        store.upsert(asset.external_id, asset.to_fields(), synced_at)
    store.commit()
    return db_session


@pytest.fixture(autouse=True)
def _reset_coordinator():
    yield
    sync_service._sync_coordinator = None
