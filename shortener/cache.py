"""In-process resolution cache.

A bounded, least-recently-used map from short code to destination sitting in
front of the mapping store. It is a disposable copy: losing an entry only
costs a store read.

Flow Diagram — get()
====================
::
    ┌─────────────┐
    │  get(code)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Resident?   │──── NO ───▶ Miss
    └──────┬──────┘
           ▼ YES
    ┌─────────────┐
    │ Past TTL or │──── YES ──▶ drop entry, Miss
    │ link expiry?│
    └──────┬──────┘
           ▼ NO
    ┌─────────────┐
    │ Mark most   │
    │ recent, Hit │
    └─────────────┘

Key Behaviours
===============
- Entries live in a ``cachetools.TLRUCache``: least-recently-used eviction at
  ``max_entries`` and a per-entry time-to-use of
  ``min(ttl_seconds, time left until the link expires)``.
- The link expiry is also checked against the wall clock on every hit, so a
  cached entry is never served past it.
- A single lock guards the cache, so concurrent callers are safe.
- ``max_entries == 0`` disables caching.
"""

import datetime
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from cachetools import TLRUCache
from prometheus_client import Counter

from shortener.config import Settings
from shortener.models import as_utc, utcnow

__all__ = ["CacheEntry", "CacheStats", "ResolutionCache"]

CACHE_HITS_TOTAL = Counter(
    "url_shortener_cache_hits_total",
    "Total resolution cache hits",
)
CACHE_MISSES_TOTAL = Counter(
    "url_shortener_cache_misses_total",
    "Total resolution cache misses",
)
CACHE_EVICTIONS_TOTAL = Counter(
    "url_shortener_cache_evictions_total",
    "Entries evicted from the resolution cache",
    ["reason"],
)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    code: str
    destination: str
    lifetime: float
    expires_at: datetime.datetime | None = None


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / max(total, 1)) * 100


def _time_to_use(code: str, entry: CacheEntry, now: float) -> float:
    return now + entry.lifetime


class _EntryCache(TLRUCache):
    """TLRUCache that reports capacity evictions."""

    def __init__(self, maxsize: int, timer: Callable[[], float], on_evict: Callable[[], None]):
        super().__init__(maxsize, _time_to_use, timer=timer)
        self._on_evict = on_evict

    def popitem(self):
        item = super().popitem()
        self._on_evict()
        return item


class ResolutionCache:
    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime.datetime] = utcnow,
    ):
        if max_entries < 0:
            raise ValueError("max_entries must not be negative")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.Lock()
        self._stats = CacheStats()
        self._entries = self._new_entries()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResolutionCache":
        return cls(settings.CACHE_MAX_ENTRIES, settings.CACHE_TTL_SECONDS)

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def __contains__(self, code: object) -> bool:
        return code in self._entries

    def get(self, code: str) -> str | None:
        with self._lock:
            self._expire()
            entry = self._entries.get(code)
            if entry is None:
                self._record_miss()
                return None
            if entry.expires_at is not None and entry.expires_at <= as_utc(self._wall_clock()):
                del self._entries[code]
                self._stats.expirations += 1
                CACHE_EVICTIONS_TOTAL.labels(reason="expired").inc()
                self._record_miss()
                return None
            self._stats.hits += 1
        CACHE_HITS_TOTAL.inc()
        return entry.destination

    def put(self, code: str, destination: str, expires_at: datetime.datetime | None = None) -> None:
        if self.max_entries == 0:
            return
        lifetime = self.ttl_seconds
        if expires_at is not None:
            expires_at = as_utc(expires_at)
            remaining = (expires_at - as_utc(self._wall_clock())).total_seconds()
            lifetime = min(lifetime, remaining)
        if lifetime <= 0:
            return
        entry = CacheEntry(code=code, destination=destination, lifetime=lifetime, expires_at=expires_at)
        with self._lock:
            self._entries[code] = entry

    def invalidate(self, code: str) -> bool:
        with self._lock:
            return self._entries.pop(code, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries = self._new_entries()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
            )

    def _new_entries(self) -> _EntryCache:
        # TLRUCache rejects every insert at maxsize 0; put() short-circuits first.
        return _EntryCache(max(self.max_entries, 1), self._clock, self._record_eviction)

    def _expire(self) -> None:
        expired = len(self._entries)
        self._entries.expire()
        expired -= len(self._entries)
        if expired:
            self._stats.expirations += expired
            CACHE_EVICTIONS_TOTAL.labels(reason="expired").inc(expired)

    def _record_eviction(self) -> None:
        self._stats.evictions += 1
        CACHE_EVICTIONS_TOTAL.labels(reason="capacity").inc()

    def _record_miss(self) -> None:
        self._stats.misses += 1
        CACHE_MISSES_TOTAL.inc()
