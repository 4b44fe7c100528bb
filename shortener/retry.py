"""Bounded exponential backoff for transient store failures.

Collision retries never go through here: they are immediate and counted by
the allocation service. Only ``TransientStoreFailure`` is retried, and only
``max_retries`` times before it is re-raised to the caller.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from prometheus_client import Counter

from shortener.config import Settings
from shortener.exceptions import TransientStoreFailure

__all__ = ["RetryPolicy", "STORE_RETRIES_TOTAL"]

T = TypeVar("T")

STORE_RETRIES_TOTAL = Counter(
    "url_shortener_store_retries_total",
    "Mapping store calls retried after a transient failure",
    ["operation"],
)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 0.05
    max_delay: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.STORE_MAX_RETRIES,
            base_delay=settings.STORE_RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.STORE_RETRY_MAX_DELAY_SECONDS,
        )

    def delay(self, retry: int) -> float:
        """Backoff before retry number ``retry`` (0-based)."""
        return min(self.base_delay * (2**retry), self.max_delay)

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        logger: logging.Logger | logging.LoggerAdapter,
    ) -> T:
        retry = 0
        while True:
            try:
                return await call()
            except TransientStoreFailure as exc:
                if retry >= self.max_retries:
                    logger.error(f"Giving up on {exc.operation} after {retry} retries")
                    raise
                wait = self.delay(retry)
                STORE_RETRIES_TOTAL.labels(operation=exc.operation).inc()
                logger.warning(f"Transient failure in {exc.operation}, retry {retry + 1} in {wait:.3f}s")
                await self.sleep(wait)
                retry += 1
