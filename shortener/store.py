"""Mapping store contract and the in-memory backend.

The mapping store is the system of record for code -> destination. Its one
safety-critical job is the conditional insert: racing inserts of the same
code must produce exactly one ``INSERTED``.

Key Behaviours
===============
- ``try_insert`` never overwrites; a taken code yields ``ALREADY_EXISTS``.
- ``lookup`` returns expired records too; callers decide what expiry means.
- Deleted codes stay reserved; a retired code is never handed out again.
- Backend unavailability is raised as ``TransientStoreFailure``.

Classes:
    MappingStore:  Abstract contract shared by every backend.
    InMemoryMappingStore:  Process-local backend for development and tests.
"""

import asyncio
import datetime
from abc import ABC, abstractmethod

from shortener.enums import InsertOutcome
from shortener.models import URLRecord, as_utc, utcnow

__all__ = ["MappingStore", "InMemoryMappingStore"]


class MappingStore(ABC):
    @abstractmethod
    async def try_insert(
        self,
        code: str,
        destination: str,
        expires_at: datetime.datetime | None = None,
    ) -> InsertOutcome:
        """Insert ``code`` unless it already exists, as one indivisible operation."""

    @abstractmethod
    async def lookup(self, code: str) -> URLRecord | None:
        """Return the record for ``code``, or ``None`` if it was never stored."""

    @abstractmethod
    async def delete(self, code: str) -> bool:
        """Remove one record. Administrative; used by expiry sweeps only."""

    @abstractmethod
    async def delete_expired(self, now: datetime.datetime | None = None) -> int:
        """Remove every record whose expiry is at or before ``now``."""

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None


class InMemoryMappingStore(MappingStore):
    def __init__(self) -> None:
        self._records: dict[str, URLRecord] = {}
        self._retired: set[str] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def try_insert(
        self,
        code: str,
        destination: str,
        expires_at: datetime.datetime | None = None,
    ) -> InsertOutcome:
        async with self._lock:
            if code in self._records or code in self._retired:
                return InsertOutcome.ALREADY_EXISTS
            self._records[code] = URLRecord(
                code=code,
                destination=destination,
                created_at=utcnow(),
                expires_at=as_utc(expires_at) if expires_at is not None else None,
            )
            return InsertOutcome.INSERTED

    async def lookup(self, code: str) -> URLRecord | None:
        return self._records.get(code)

    async def delete(self, code: str) -> bool:
        async with self._lock:
            if self._records.pop(code, None) is None:
                return False
            self._retired.add(code)
            return True

    async def delete_expired(self, now: datetime.datetime | None = None) -> int:
        now = now or utcnow()
        async with self._lock:
            expired = [code for code, record in self._records.items() if record.is_expired(now)]
            for code in expired:
                del self._records[code]
                self._retired.add(code)
            return len(expired)
