"""Abstract price feed interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from coincatalog.schemas.feed import FeedPage


class BaseFeed(ABC):
    """Paginated market-data source.

    Implementations keep no cursor between calls: any page may be requested
    again, in any order.
    """

    name: str

    @abstractmethod
    async def fetch_page(self, page_index: int, page_size: int) -> FeedPage:
        """Fetch one page (1-based) of assets ordered by market cap descending.

        Raises FeedUnavailable, FeedTimeout or FeedRateLimited once retries
        are exhausted. A page with ``raw_count == 0`` means the feed has no
        more rows.
        """
