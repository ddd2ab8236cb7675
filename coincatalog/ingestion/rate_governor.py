"""Outbound call spacing for the price feed."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from coincatalog.core.config import settings
from coincatalog.core.logging import get_logger

log = get_logger("ingestion.rate_governor")


class RateGovernor:
    """Serializes feed calls to a minimum spacing between consecutive calls.

    No burst allowance: every caller waits its turn behind a single lock.
    Cancelling a caller while it waits releases the lock and does not consume
    a slot.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._next_allowed: Optional[float] = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._next_allowed is not None:
                wait = self._next_allowed - self._clock()
                if wait > 0:
                    log.debug(f"Rate governor holding call for {wait:.2f}s")
                    await self._sleep(wait)
            self._next_allowed = self._clock() + self.min_interval


_governor: Optional[RateGovernor] = None


def get_rate_governor() -> RateGovernor:
    """Process-wide governor shared by every feed client."""
    global _governor
    if _governor is None:
        _governor = RateGovernor(settings.FEED_MIN_CALL_INTERVAL_SECONDS)
    return _governor
