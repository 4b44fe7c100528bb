"""Allocation service: reserve a unique short code for a destination.

Flow Diagram — allocate()
=========================
::
    ┌─────────────┐
    │ allocate(d) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ parse_      │──── invalid ──▶ DestinationValidationError
    │ destination │
    └──────┬──────┘
           ▼
    ┌─────────────┐◀──────────────────────────────┐
    │ generate(   │                               │
    │  attempt)   │                               │
    └──────┬──────┘                               │
           ▼                                      │
    ┌─────────────┐   transient: backoff, same    │
    │ try_insert  │   candidate, bounded retries  │
    └──────┬──────┘                               │
    INSERTED?   │                                 │
    ┌─────┴─────┐                                 │
    │ NO         │ YES                            │
    ▼            ▼                                │
 attempt+1    return code                         │
    │                                             │
    └── attempts left ────────────────────────────┘
    │
    ▼ none left
 CollisionRetryExhausted

Key Behaviours
===============
- Validation happens before any store interaction.
- Collision retries are immediate; transient failures back off.
- The two budgets are independent: ``MAX_ALLOCATION_ATTEMPTS`` candidates,
  each with up to ``STORE_MAX_RETRIES`` transient retries.
- Newly allocated codes are not written to the resolution cache.
"""

import datetime
import functools
import logging
import time

from prometheus_client import Counter, Histogram

from shortener.codegen import CodeGenerator
from shortener.config import Settings
from shortener.enums import InsertOutcome, RequestStatus
from shortener.exceptions import CollisionRetryExhausted, DestinationValidationError, TransientStoreFailure
from shortener.models import as_utc, utcnow
from shortener.retry import RetryPolicy
from shortener.schemas import parse_destination
from shortener.store import MappingStore

__all__ = ["AllocationService"]

ALLOCATION_REQUESTS_TOTAL = Counter(
    "url_shortener_allocation_requests_total",
    "Total short code allocation requests",
    ["status"],
)
ALLOCATION_COLLISIONS_TOTAL = Counter(
    "url_shortener_allocation_collisions_total",
    "Candidate codes rejected because they were already taken",
)
ALLOCATION_DURATION = Histogram(
    "url_shortener_allocation_duration_seconds",
    "Time taken to allocate short codes",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


class AllocationService:
    """Mint collision-free short codes and persist them.

    Example:
        >>> service = AllocationService(store, generator, settings)
        >>> code = await service.allocate("https://example.com/a")
    """

    def __init__(
        self,
        store: MappingStore,
        generator: CodeGenerator,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._store = store
        self._generator = generator
        self._settings = settings
        self._logger = logger or logging.getLogger("urlshortener")
        self._retry = retry_policy or RetryPolicy.from_settings(settings)

    @property
    def max_attempts(self) -> int:
        return self._settings.MAX_ALLOCATION_ATTEMPTS

    async def allocate(self, destination: str, expires_at: datetime.datetime | None = None) -> str:
        """Reserve a new short code for ``destination``.

        Raises:
            DestinationValidationError: The destination or expiry is unacceptable.
            CollisionRetryExhausted: Every candidate was already taken.
            TransientStoreFailure: The store stayed unavailable through all retries.
        """
        start_time = time.perf_counter()
        try:
            target = parse_destination(destination, self._settings.MAX_DESTINATION_LENGTH)
            expiry = self._check_expiry(expires_at)
            code = await self._reserve_code(target.url, expiry)
        except DestinationValidationError as exc:
            self._finish(start_time, RequestStatus.VALIDATION_ERROR)
            self._logger.warning(f"Rejected destination: {exc}")
            raise
        except CollisionRetryExhausted as exc:
            self._finish(start_time, RequestStatus.EXHAUSTED)
            self._logger.error(f"Short code allocation exhausted: {exc}")
            raise
        except TransientStoreFailure as exc:
            self._finish(start_time, RequestStatus.UNAVAILABLE)
            self._logger.error(f"Short code allocation failed, store unavailable: {exc}")
            raise

        duration = self._finish(start_time, RequestStatus.SUCCESS)
        self._logger.info(f"Allocated {code} in {duration:.3f}s")
        return code

    async def _reserve_code(self, destination: str, expires_at: datetime.datetime | None) -> str:
        for attempt in range(self.max_attempts):
            await self._retry.run(self._generator.reserve, self._logger)
            code = self._generator.generate(attempt)
            outcome = await self._retry.run(
                functools.partial(self._store.try_insert, code, destination, expires_at),
                self._logger,
            )
            if outcome is InsertOutcome.INSERTED:
                return code
            ALLOCATION_COLLISIONS_TOTAL.inc()
            self._logger.debug(f"Collision on {code} (attempt {attempt + 1}/{self.max_attempts})")
        raise CollisionRetryExhausted(self.max_attempts)

    @staticmethod
    def _check_expiry(expires_at: datetime.datetime | None) -> datetime.datetime | None:
        if expires_at is None:
            return None
        expiry = as_utc(expires_at)
        if expiry <= utcnow():
            raise DestinationValidationError("Expiry must be in the future")
        return expiry

    @staticmethod
    def _finish(start_time: float, status: RequestStatus) -> float:
        duration = time.perf_counter() - start_time
        ALLOCATION_DURATION.observe(duration)
        ALLOCATION_REQUESTS_TOTAL.labels(status=status).inc()
        return duration
