"""Request pacing for the upstream product API."""

from __future__ import annotations

import asyncio
import time


class RateLimiter:
    """Minimum spacing between dispatches, shared by every caller of one client."""

    def __init__(self, *, rate: float = 1.0) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    @property
    def min_interval(self) -> float:
        return 1.0 / self.rate

    async def wait(self) -> None:
        async with self._lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_request = time.monotonic()
