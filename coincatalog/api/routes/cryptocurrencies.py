"""Cryptocurrency routes - listings, lookups and market analytics."""

from typing import List, Optional, get_args

from fastapi import APIRouter, Depends, Query

from coincatalog.api.deps import get_market_service
from coincatalog.schemas.api import (
    AssetQuery,
    CatalogHealthResponse,
    CryptoAssetOut,
    MarketStatsResponse,
    PagedAssetsResponse,
    SortField,
    TopMoversResponse,
)
from coincatalog.services.market_service import MarketService

router = APIRouter(prefix="/cryptocurrencies", tags=["cryptocurrencies"])


@router.get("", response_model=PagedAssetsResponse)
def list_cryptocurrencies(
    search: Optional[str] = Query(None, description="Case-insensitive match on name, symbol or CoinGecko id"),
    min_rank: Optional[int] = Query(None, ge=1, description="Assets with market cap rank >= min_rank"),
    max_rank: Optional[int] = Query(None, ge=1, description="Assets with market cap rank <= max_rank"),
    min_price: Optional[float] = Query(None, ge=0, description="Minimum price"),
    max_price: Optional[float] = Query(None, ge=0, description="Maximum price"),
    min_change_24h: Optional[float] = Query(None, description="Minimum 24h change (%)"),
    max_change_24h: Optional[float] = Query(None, description="Maximum 24h change (%)"),
    active_only: bool = Query(True, description="Only actively tracked assets"),
    sort_by: str = Query("market_cap_rank", description=f"Sort field, one of: {', '.join(get_args(SortField))}"),
    order: str = Query("asc", description="Sort order (asc or desc)"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100, description="Items per page (max 100)"),
    service: MarketService = Depends(get_market_service),
):
    """
    Paginated catalog listing.

    Ties on the sort field are broken by CoinGecko id so pages are stable.
    A min bound greater than its max bound is rejected with 400.
    """
    query = AssetQuery(
        search=search,
        min_rank=min_rank,
        max_rank=max_rank,
        min_price=min_price,
        max_price=max_price,
        min_change_24h=min_change_24h,
        max_change_24h=max_change_24h,
        active_only=active_only,
        sort_by=sort_by,
        order=order,
        page=page,
        limit=limit,
    )
    return service.list_assets(query)


@router.get("/search", response_model=PagedAssetsResponse)
def search_cryptocurrencies(
    q: str = Query(..., min_length=1, description="Search query", examples=["bitcoin"]),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: MarketService = Depends(get_market_service),
):
    """Search by name, symbol or CoinGecko id."""
    return service.search(q, page=page, limit=limit)


@router.get("/stats", response_model=MarketStatsResponse)
def get_market_stats(service: MarketService = Depends(get_market_service)):
    """Totals, dominance and breadth over active assets."""
    return service.market_stats()


@router.get("/trending", response_model=TopMoversResponse)
def get_trending(
    limit: int = Query(10, ge=1, le=50),
    service: MarketService = Depends(get_market_service),
):
    """Top gainers, losers and most volatile assets over 24h."""
    return service.top_movers(limit=limit)


@router.get("/compare", response_model=List[CryptoAssetOut])
def compare_cryptocurrencies(
    symbols: str = Query(..., description="Comma-separated symbols", examples=["btc,eth,ada"]),
    service: MarketService = Depends(get_market_service),
):
    """
    Compare assets by ticker.

    Tickers are not unique, so one symbol can return several assets.
    """
    return service.compare(symbols.split(","))


@router.get("/health", response_model=CatalogHealthResponse)
def catalog_health(service: MarketService = Depends(get_market_service)):
    """Catalog freshness: degraded once syncs keep failing."""
    return service.health_check()


@router.get("/coingecko/{external_id}", response_model=CryptoAssetOut)
def get_by_coingecko_id(
    external_id: str,
    service: MarketService = Depends(get_market_service),
):
    """Get a single asset by its CoinGecko id."""
    return service.get_by_external_id(external_id)


@router.get("/{asset_id}", response_model=CryptoAssetOut)
def get_by_id(
    asset_id: str,
    service: MarketService = Depends(get_market_service),
):
    """Get a single asset by its catalog UUID."""
    return service.get_by_id(asset_id)
