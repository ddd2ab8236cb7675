"""CoinGecko /coins/markets feed client."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from coincatalog.core.config import settings
from coincatalog.core.errors import FeedError, FeedRateLimited, FeedTimeout, FeedUnavailable
from coincatalog.core.logging import get_logger
from coincatalog.ingestion.rate_governor import RateGovernor, get_rate_governor
from coincatalog.schemas.feed import FeedAsset, FeedPage
from .base import BaseFeed

log = get_logger("ingestion.coingecko")


class CoinGeckoFeed(BaseFeed):
    """Fetches market pages from CoinGecko with timeout, retry and backoff.

    Every attempt, retries included, waits on the shared rate governor first.
    Between attempts the client sleeps ``attempt * retry_base`` seconds; a 429
    with a larger numeric ``Retry-After`` waits that long instead, up to
    ``max_retry_after``.
    """

    name = "coingecko"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        currency: Optional[str] = None,
        price_change_windows: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_base: Optional[float] = None,
        max_retry_after: Optional[float] = None,
        governor: Optional[RateGovernor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.COINGECKO_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.COINGECKO_API_KEY
        self.currency = currency or settings.FEED_CURRENCY
        self.price_change_windows = price_change_windows or settings.FEED_PRICE_CHANGE_WINDOWS
        self.timeout = timeout if timeout is not None else settings.FEED_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.FEED_MAX_ATTEMPTS)
        self.retry_base = retry_base if retry_base is not None else settings.FEED_RETRY_BASE_SECONDS
        self.max_retry_after = (
            max_retry_after if max_retry_after is not None else settings.FEED_MAX_RETRY_AFTER_SECONDS
        )
        self.governor = governor or get_rate_governor()
        self._transport = transport
        self._sleep = sleep

    async def fetch_page(self, page_index: int, page_size: int) -> FeedPage:
        if page_index < 1:
            raise ValueError("page_index is 1-based")
        if page_size < 1:
            raise ValueError("page_size must be positive")

        params = {
            "vs_currency": self.currency,
            "order": "market_cap_desc",
            "per_page": page_size,
            "page": page_index,
            "sparkline": "false",
            "price_change_percentage": self.price_change_windows,
        }

        attempt = 0
        while True:
            attempt += 1
            await self.governor.acquire()
            try:
                data = await self._request(params)
            except FeedError as exc:
                if not exc.retryable:
                    raise
                if attempt >= self.max_attempts:
                    log.error(f"Feed page {page_index} failed after {attempt} attempts: {exc}")
                    raise
                delay = self._backoff(attempt, exc)
                log.warning(
                    f"Feed page {page_index} attempt {attempt}/{self.max_attempts} failed: {exc}; "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                continue

            page = self._normalize(data, page_index)
            log.info(
                f"Fetched page {page_index} ({len(page.assets)}/{page.raw_count} rows valid) from CoinGecko"
            )
            return page

    def _backoff(self, attempt: int, exc: FeedError) -> float:
        delay = attempt * self.retry_base
        retry_after = getattr(exc, "retry_after", None)
        if retry_after and retry_after > delay:
            if retry_after > self.max_retry_after:
                log.warning(f"Retry-After {retry_after:.0f}s capped at {self.max_retry_after:.0f}s")
            return max(delay, min(retry_after, self.max_retry_after))
        return delay

    async def _request(self, params: Dict[str, Any]) -> Any:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get("/coins/markets", params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise FeedTimeout(f"CoinGecko timed out after {self.timeout}s") from exc
        except httpx.TransportError as exc:
            raise FeedUnavailable(f"CoinGecko unreachable: {exc}") from exc

        if resp.status_code == 429:
            raise FeedRateLimited("CoinGecko rate limit hit (429)", retry_after=self._retry_after(resp))
        if resp.status_code >= 500:
            raise FeedUnavailable(f"CoinGecko server error {resp.status_code}")
        if resp.status_code >= 400:
            raise FeedUnavailable(f"CoinGecko rejected request with {resp.status_code}", retryable=False)

        try:
            return resp.json()
        except ValueError as exc:
            raise FeedUnavailable("CoinGecko returned a non-JSON body", retryable=False) from exc

    @staticmethod
    def _retry_after(resp: httpx.Response) -> Optional[float]:
        value = resp.headers.get("Retry-After")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            return None

    @staticmethod
    def _normalize(data: Any, page_index: int) -> FeedPage:
        if not isinstance(data, list):
            raise FeedUnavailable(f"Unexpected CoinGecko payload on page {page_index}: {type(data).__name__}")

        assets: List[FeedAsset] = []
        for item in data:
            if not isinstance(item, dict):
                log.warning(f"Skipping non-object row on page {page_index}: {item!r}")
                continue
            try:
                assets.append(FeedAsset.model_validate(item))
            except ValidationError as exc:
                log.warning(f"Skipping invalid row {item.get('id')!r} on page {page_index}: {exc.error_count()} errors")
        return FeedPage(assets=assets, raw_count=len(data))
