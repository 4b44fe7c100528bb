"""Resolution service: short code to destination.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │ resolve(c)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Well-formed │──── NO ───▶ None
    │ code?       │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Cache get   │──── HIT ──▶ destination
    └──────┬──────┘
           ▼ MISS
    ┌─────────────┐
    │ Store lookup│──── transient, retries spent ──▶ TransientStoreFailure
    └──────┬──────┘
    FOUND & LIVE?│
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
   None     cache put, destination

Key Behaviours
===============
- Not-found results are never cached.
- Expired links resolve to ``None`` even while the row awaits the sweep.
- A store timeout is an error, never a false ``None``.
"""

import datetime
import functools
import logging
import time
from collections.abc import Callable

from prometheus_client import Counter, Histogram

from shortener.cache import ResolutionCache
from shortener.config import CODE_COLUMN_WIDTH, Settings
from shortener.enums import CacheStatus, RequestStatus
from shortener.exceptions import TransientStoreFailure
from shortener.models import URLRecord, utcnow
from shortener.retry import RetryPolicy
from shortener.store import MappingStore

__all__ = ["ResolutionService"]

RESOLUTION_REQUESTS_TOTAL = Counter(
    "url_shortener_resolution_requests_total",
    "Total short code resolution requests",
    ["status", "cache_hit"],
)
RESOLUTION_DURATION = Histogram(
    "url_shortener_resolution_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


class ResolutionService:
    def __init__(
        self,
        store: MappingStore,
        cache: ResolutionCache,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self._store = store
        self._cache = cache
        self._settings = settings
        self._logger = logger or logging.getLogger("urlshortener")
        self._retry = retry_policy or RetryPolicy.from_settings(settings)
        self._clock = clock
        self._alphabet = frozenset(settings.CODE_ALPHABET)

    async def resolve(self, code: str) -> str | None:
        """Return the destination for ``code``, or ``None`` if unknown or expired.

        Raises:
            TransientStoreFailure: The store could not be read after all retries.
        """
        start_time = time.perf_counter()
        if not self.is_well_formed(code):
            self._finish(start_time, RequestStatus.NOT_FOUND, CacheStatus.MISS)
            self._logger.debug(f"Rejected malformed code {code!r}")
            return None

        cached = self._cache.get(code)
        if cached is not None:
            self._finish(start_time, RequestStatus.SUCCESS, CacheStatus.HIT)
            return cached

        try:
            record = await self._load(code)
        except TransientStoreFailure:
            self._finish(start_time, RequestStatus.UNAVAILABLE, CacheStatus.MISS)
            raise

        if record is None:
            self._finish(start_time, RequestStatus.NOT_FOUND, CacheStatus.MISS)
            self._logger.debug(f"No live link for {code}")
            return None

        self._cache.put(code, record.destination, record.expires_at)
        self._finish(start_time, RequestStatus.SUCCESS, CacheStatus.MISS)
        return record.destination

    async def describe(self, code: str) -> URLRecord | None:
        """Return the live record for ``code``, read from the store."""
        if not self.is_well_formed(code):
            return None
        return await self._load(code)

    def is_well_formed(self, code: str) -> bool:
        return 0 < len(code) <= CODE_COLUMN_WIDTH and all(symbol in self._alphabet for symbol in code)

    async def _load(self, code: str) -> URLRecord | None:
        record = await self._retry.run(functools.partial(self._store.lookup, code), self._logger)
        if record is None or record.is_expired(self._clock()):
            return None
        return record

    @staticmethod
    def _finish(start_time: float, status: RequestStatus, cache_hit: CacheStatus) -> None:
        RESOLUTION_DURATION.observe(time.perf_counter() - start_time)
        RESOLUTION_REQUESTS_TOTAL.labels(status=status, cache_hit=cache_hit).inc()
