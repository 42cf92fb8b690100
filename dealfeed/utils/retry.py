"""Retry policy applied at the batch and item boundary."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Timeouts are mapped to UpstreamTimeoutError by the client before they get here,
# so only connection-level failures are retried within a run.
RETRY_EXCEPTIONS: tuple[type[BaseException], ...] = (httpx.TransportError,)


@dataclass(slots=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    jitter: float = 1.0
    retry_on: tuple[type[BaseException], ...] = field(default=RETRY_EXCEPTIONS)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
            backoff_multiplier=settings.retry_backoff,
        )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        delay = self.initial_delay
        attempts = max(self.max_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as exc:
                if attempt == attempts:
                    raise
                logger.info("Attempt %s/%s failed (%s); retrying", attempt, attempts, exc)
                await asyncio.sleep(delay + random.random() * self.jitter)
                delay *= self.backoff_multiplier
        raise AssertionError("unreachable")  # pragma: no cover
