"""Market Service - read-only listings and analytics over the catalog."""

from __future__ import annotations

import math
import uuid
from typing import List, Optional, Sequence

from coincatalog.core.config import settings
from coincatalog.core.errors import InvalidQuery, NotFound
from coincatalog.core.logging import get_logger
from coincatalog.models.asset import CryptoAsset
from coincatalog.schemas.api import (
    AssetQuery,
    CatalogHealthResponse,
    CryptoAssetOut,
    MarketStatsResponse,
    PagedAssetsResponse,
    PaginationOut,
    SyncStatusResponse,
    TopMoversResponse,
    VolatileAssetOut,
)
from coincatalog.services.scheduler import SyncScheduler
from coincatalog.services.sync_service import SyncCoordinator
from coincatalog.store.catalog import SORTABLE_FIELDS, AssetFilter, CatalogStore, SortSpec

log = get_logger("market_service")

MAX_PAGE_LIMIT = 100
MAX_COMPARE_SYMBOLS = 10
MAX_MOVERS_LIMIT = 50


class MarketService:
    """Answers listing, lookup, comparison and statistics requests.

    Reads only; every aggregate is computed fresh from the store per call.
    Store failures arrive as ``ServiceUnavailable`` and are not caught here.
    """

    def __init__(
        self,
        store: CatalogStore,
        coordinator: Optional[SyncCoordinator] = None,
        scheduler: Optional[SyncScheduler] = None,
    ):
        self.store = store
        self.coordinator = coordinator
        self.scheduler = scheduler

    # -------------------------------------------------------------------------
    # Listings
    # -------------------------------------------------------------------------
    def list_assets(self, query: AssetQuery) -> PagedAssetsResponse:
        """Filtered, sorted, paginated listing."""
        flt, sort = self._validate(query)
        offset = (query.page - 1) * query.limit
        rows, total = self.store.find_many(flt, sort, offset=offset, limit=query.limit)

        total_pages = math.ceil(total / query.limit) if total else 0
        return PagedAssetsResponse(
            data=[CryptoAssetOut.model_validate(r) for r in rows],
            pagination=PaginationOut(
                total=total,
                page=query.page,
                limit=query.limit,
                total_pages=total_pages,
                has_next=query.page < total_pages,
                has_prev=query.page > 1,
            ),
        )

    def search(self, term: str, page: int = 1, limit: int = 20) -> PagedAssetsResponse:
        if not term or not term.strip():
            raise InvalidQuery("Search term must not be empty")
        return self.list_assets(AssetQuery(search=term.strip(), page=page, limit=limit))

    @staticmethod
    def _validate(query: AssetQuery) -> tuple[AssetFilter, SortSpec]:
        if query.page < 1:
            raise InvalidQuery("page must be >= 1")
        if not 1 <= query.limit <= MAX_PAGE_LIMIT:
            raise InvalidQuery(f"limit must be between 1 and {MAX_PAGE_LIMIT}")
        if query.sort_by not in SORTABLE_FIELDS:
            raise InvalidQuery(f"Cannot sort by '{query.sort_by}'")
        if query.order not in ("asc", "desc"):
            raise InvalidQuery("order must be 'asc' or 'desc'")

        for label, low, high in (
            ("rank", query.min_rank, query.max_rank),
            ("price", query.min_price, query.max_price),
            ("24h change", query.min_change_24h, query.max_change_24h),
        ):
            if low is not None and high is not None and low > high:
                raise InvalidQuery(f"min {label} ({low}) is greater than max {label} ({high})")
        if query.min_rank is not None and query.min_rank < 1:
            raise InvalidQuery("min_rank must be >= 1")
        if query.min_price is not None and query.min_price < 0:
            raise InvalidQuery("min_price must be >= 0")

        flt = AssetFilter(
            search=query.search or None,
            min_rank=query.min_rank,
            max_rank=query.max_rank,
            min_price=query.min_price,
            max_price=query.max_price,
            min_change_24h=query.min_change_24h,
            max_change_24h=query.max_change_24h,
            active_only=query.active_only,
        )
        return flt, SortSpec(field=query.sort_by, order=query.order)  # type: ignore[arg-type]

    # -------------------------------------------------------------------------
    # Point lookups
    # -------------------------------------------------------------------------
    def get_by_external_id(self, external_id: str) -> CryptoAssetOut:
        asset = self.store.find_by_key(external_id)
        if asset is None:
            raise NotFound(f"Cryptocurrency '{external_id}' not found")
        return CryptoAssetOut.model_validate(asset)

    def get_by_id(self, asset_id: str) -> CryptoAssetOut:
        try:
            key = uuid.UUID(str(asset_id))
        except ValueError as exc:
            raise InvalidQuery(f"'{asset_id}' is not a valid UUID") from exc

        asset = self.store.find_by_id(key)
        if asset is None:
            raise NotFound(f"Cryptocurrency with id '{asset_id}' not found")
        return CryptoAssetOut.model_validate(asset)

    # -------------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------------
    def compare(self, symbols: Sequence[str]) -> List[CryptoAssetOut]:
        """Active assets matching any of ``symbols``, rank ascending.

        Symbols are not unique in the feed, so one input symbol may yield
        several rows. All of them are returned.
        """
        wanted: List[str] = []
        for raw in symbols:
            symbol = (raw or "").strip().upper()
            if symbol and symbol not in wanted:
                wanted.append(symbol)

        if not wanted:
            raise InvalidQuery("At least one symbol is required")
        if len(wanted) > MAX_COMPARE_SYMBOLS:
            raise InvalidQuery(f"At most {MAX_COMPARE_SYMBOLS} symbols can be compared")

        rows = self.store.find_all(
            AssetFilter(symbols=wanted, active_only=True),
            SortSpec(field="market_cap_rank", order="asc"),
        )
        if not rows:
            raise NotFound(f"No cryptocurrencies found for symbols: {', '.join(wanted)}")
        return [CryptoAssetOut.model_validate(r) for r in rows]

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------
    def market_stats(self) -> MarketStatsResponse:
        active = AssetFilter(active_only=True)
        total_cap = float(self.store.aggregate("sum", "market_cap", active) or 0.0)
        total_volume = float(self.store.aggregate("sum", "total_volume", active) or 0.0)
        avg_change = self.store.aggregate("avg", "price_change_percentage_24h", active)

        return MarketStatsResponse(
            total_cryptocurrencies=self.store.count(active),
            total_market_cap=total_cap,
            total_volume_24h=total_volume,
            bitcoin_dominance=self._dominance(settings.DOMINANCE_PRIMARY_ID, total_cap),
            ethereum_dominance=self._dominance(settings.DOMINANCE_SECONDARY_ID, total_cap),
            average_change_24h=round(float(avg_change), 2) if avg_change is not None else 0.0,
            positive_movers=self.store.count(AssetFilter(active_only=True, change_direction="up")),
            negative_movers=self.store.count(AssetFilter(active_only=True, change_direction="down")),
            last_updated=self.store.aggregate("max", "last_synced_at", active),
        )

    def _dominance(self, external_id: str, total_cap: float) -> float:
        if total_cap <= 0:
            return 0.0
        asset = self.store.find_by_key(external_id)
        if asset is None or not asset.is_active or not asset.market_cap:
            return 0.0
        return round(asset.market_cap / total_cap * 100, 2)

    def top_movers(self, limit: int = 10) -> TopMoversResponse:
        """Gainers, losers and intraday-range volatility leaders among active assets."""
        if not 1 <= limit <= MAX_MOVERS_LIMIT:
            raise InvalidQuery(f"limit must be between 1 and {MAX_MOVERS_LIMIT}")

        with_change = AssetFilter(active_only=True, require_fields=("price_change_percentage_24h",))
        gainers, _ = self.store.find_many(with_change, SortSpec("price_change_percentage_24h", "desc"), 0, limit)
        losers, _ = self.store.find_many(with_change, SortSpec("price_change_percentage_24h", "asc"), 0, limit)

        return TopMoversResponse(
            top_gainers=[CryptoAssetOut.model_validate(r) for r in gainers],
            top_losers=[CryptoAssetOut.model_validate(r) for r in losers],
            most_volatile=self._most_volatile(limit),
        )

    def _most_volatile(self, limit: int) -> List[VolatileAssetOut]:
        candidates = self.store.find_all(
            AssetFilter(active_only=True, require_fields=("high_24h", "low_24h", "current_price")),
        )
        scored: List[tuple[float, CryptoAsset]] = []
        for asset in candidates:
            if asset.current_price is None or asset.current_price <= 0:
                continue
            ratio = (asset.high_24h - asset.low_24h) / asset.current_price * 100
            scored.append((ratio, asset))

        scored.sort(key=lambda item: (-item[0], item[1].external_id))
        return [
            VolatileAssetOut.model_validate(
                {**CryptoAssetOut.model_validate(asset).model_dump(), "volatility": round(ratio, 4)}
            )
            for ratio, asset in scored[:limit]
        ]

    # -------------------------------------------------------------------------
    # Sync status / health
    # -------------------------------------------------------------------------
    def sync_status(self) -> SyncStatusResponse:
        if self.coordinator is None:
            return SyncStatusResponse(
                is_syncing=False,
                phase="idle",
                sync_errors=0,
                data_source=settings.SYNC_DATA_SOURCE_LABEL,
            )

        state = self.coordinator.state
        return SyncStatusResponse(
            is_syncing=state.in_progress,
            phase=state.phase.value,
            last_sync=state.last_completed_at,
            last_started_at=state.last_started_at,
            next_sync_estimate=self.scheduler.next_run_estimate() if self.scheduler else None,
            sync_errors=state.consecutive_error_count,
            last_error=state.last_error,
            data_source=state.data_source_label,
        )

    def health_check(self) -> CatalogHealthResponse:
        status = self.sync_status()
        healthy = status.sync_errors < settings.HEALTH_MAX_SYNC_ERRORS
        return CatalogHealthResponse(
            status="healthy" if healthy else "degraded",
            last_sync=status.last_sync,
            total_coins=self.store.count(AssetFilter(active_only=True)),
        )
