"""SQLAlchemy-backed mapping store.

Flow Diagram — try_insert()
===========================
::
    ┌─────────────┐
    │ try_insert  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT row  │
    │ + COMMIT    │
    └──────┬──────┘
    UNIQUE OK?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ ROLLBACK│  │INSERTED │
│ ALREADY_│  └─────────┘
│ EXISTS  │
└─────────┘

Key Behaviours
===============
- Uniqueness is decided by the database's unique index, never by a prior
  SELECT, so concurrent allocators cannot both win the same code.
- Every call runs under ``STORE_TIMEOUT_SECONDS``; timeouts, driver
  connection errors and socket-level failures (refused, DNS) surface as
  ``TransientStoreFailure``.
- Only a unique-index violation means ``ALREADY_EXISTS``; any other
  integrity error propagates.
- Cancelling the calling task abandons the statement; the session context
  closes the connection.
- ``delete`` retires a row (clears the destination, stamps ``retired_at``)
  so the code remains taken.
"""

import asyncio
import datetime
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortener.database import close_db
from shortener.enums import InsertOutcome
from shortener.exceptions import TransientStoreFailure
from shortener.models import ShortLink, URLRecord, as_utc, utcnow
from shortener.store import MappingStore

__all__ = ["SQLMappingStore"]

logger = logging.getLogger("urlshortener")

TRANSIENT_ERRORS = (
    TimeoutError,
    PoolTimeoutError,
    OperationalError,
    InterfaceError,
    DisconnectionError,
    OSError,
)

# SQLSTATE unique_violation
UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate == UNIQUE_VIOLATION


class SQLMappingStore(MappingStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float,
        engine: AsyncEngine | None = None,
    ):
        self._session_factory = session_factory
        self._timeout = timeout
        self._engine = engine

    @asynccontextmanager
    async def _call(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session:
                    yield session
        except TRANSIENT_ERRORS as exc:
            logger.warning(f"Mapping store {operation} failed: {exc!r}")
            raise TransientStoreFailure(operation) from exc

    async def try_insert(
        self,
        code: str,
        destination: str,
        expires_at: datetime.datetime | None = None,
    ) -> InsertOutcome:
        async with self._call("try_insert") as session:
            session.add(
                ShortLink(
                    code=code,
                    destination=destination,
                    expires_at=as_utc(expires_at) if expires_at is not None else None,
                )
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                if not is_unique_violation(exc):
                    raise
                return InsertOutcome.ALREADY_EXISTS
            return InsertOutcome.INSERTED

    async def lookup(self, code: str) -> URLRecord | None:
        async with self._call("lookup") as session:
            result = await session.execute(
                select(ShortLink).where(ShortLink.code == code, ShortLink.retired_at.is_(None))
            )
            row = result.scalar_one_or_none()
            return row.to_record() if row is not None else None

    async def delete(self, code: str) -> bool:
        async with self._call("delete") as session:
            result = await session.execute(
                update(ShortLink)
                .where(ShortLink.code == code, ShortLink.retired_at.is_(None))
                .values(destination="", retired_at=func.now())
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_expired(self, now: datetime.datetime | None = None) -> int:
        cutoff = as_utc(now) if now is not None else utcnow()
        async with self._call("delete_expired") as session:
            result = await session.execute(
                update(ShortLink)
                .where(
                    ShortLink.expires_at.is_not(None),
                    ShortLink.expires_at <= cutoff,
                    ShortLink.retired_at.is_(None),
                )
                .values(destination="", retired_at=func.now())
            )
            await session.commit()
            return result.rowcount

    async def ping(self) -> None:
        async with self._call("ping") as session:
            await session.execute(text("SELECT 1"))

    async def close(self) -> None:
        if self._engine is not None:
            await close_db(self._engine)
