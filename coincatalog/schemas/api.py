import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


SortField = Literal[
    "market_cap_rank",
    "current_price",
    "market_cap",
    "total_volume",
    "price_change_percentage_24h",
    "price_change_percentage_7d",
    "price_change_percentage_30d",
    "name",
    "symbol",
    "created_at",
    "last_synced_at",
]


class AssetQuery(BaseModel):
    """Listing request; cross-field checks happen in the market service."""

    search: Optional[str] = None
    min_rank: Optional[int] = None
    max_rank: Optional[int] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_change_24h: Optional[float] = None
    max_change_24h: Optional[float] = None
    active_only: bool = True
    sort_by: str = "market_cap_rank"
    order: str = "asc"
    page: int = 1
    limit: int = 20


class CryptoAssetOut(BaseModel):
    """A catalog entry as served to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    external_id: str
    symbol: str
    name: str
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    market_cap_rank: Optional[int] = None
    total_volume: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    price_change_percentage_7d: Optional[float] = None
    price_change_percentage_30d: Optional[float] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None
    all_time_high: Optional[float] = None
    all_time_high_date: Optional[datetime] = None
    all_time_low: Optional[float] = None
    all_time_low_date: Optional[datetime] = None
    image: Optional[str] = None
    description: Optional[str] = None
    homepage: Optional[str] = None
    categories: Optional[List[str]] = None
    is_active: bool
    last_synced_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaginationOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    page: int
    limit: int
    total_pages: int = Field(serialization_alias="totalPages")
    has_next: bool = Field(serialization_alias="hasNext")
    has_prev: bool = Field(serialization_alias="hasPrev")


class PagedAssetsResponse(BaseModel):
    data: List[CryptoAssetOut]
    pagination: PaginationOut


class MarketStatsResponse(BaseModel):
    total_cryptocurrencies: int
    total_market_cap: float
    total_volume_24h: float
    bitcoin_dominance: float
    ethereum_dominance: float
    average_change_24h: float
    positive_movers: int
    negative_movers: int
    last_updated: Optional[datetime] = None


class VolatileAssetOut(CryptoAssetOut):
    volatility: float


class TopMoversResponse(BaseModel):
    top_gainers: List[CryptoAssetOut]
    top_losers: List[CryptoAssetOut]
    most_volatile: List[VolatileAssetOut]


class SyncStatusResponse(BaseModel):
    is_syncing: bool
    phase: str
    last_sync: Optional[datetime] = None
    last_started_at: Optional[datetime] = None
    next_sync_estimate: Optional[datetime] = None
    sync_errors: int
    last_error: Optional[str] = None
    data_source: str


class SyncTriggerResponse(BaseModel):
    message: str
    started: bool


class CatalogHealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    last_sync: Optional[datetime] = None
    total_coins: int


class HealthResponse(BaseModel):
    database: str
    last_sync_status: str | None


class SyncRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    run_id: uuid.UUID
    trigger: str
    status: str
    pages_fetched: int
    records_processed: int
    inserted_count: int
    updated_count: int
    error_message: str | None = None
    started_at: datetime
    ended_at: datetime | None = None
