"""Persisted records for the short-link engine.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ destination (TEXT NOT NULL)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    ├─ expires_at (TIMESTAMPTZ, NULL)
    └─ retired_at (TIMESTAMPTZ, NULL)

Key Behaviours
===============
- The unique index on ``code`` is what makes conditional inserts atomic.
- Deleting a link retires its row instead of removing it, so the code stays
  taken forever and can never be reassigned.
- ``URLRecord`` is the immutable value handed out by every store backend.

Classes:
    ShortLink:  ORM row for the SQL store.
    URLRecord:  Backend-independent read-only view of a row.
"""

import datetime
from dataclasses import dataclass

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.config import CODE_COLUMN_WIDTH
from shortener.database import Base

__all__ = ["ShortLink", "URLRecord", "utcnow", "as_utc"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(CODE_COLUMN_WIDTH), unique=True, index=True, nullable=False)
    destination: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    retired_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, code='{self.code}')>"

    def to_record(self) -> "URLRecord":
        return URLRecord(
            code=self.code,
            destination=self.destination,
            created_at=self.created_at,
            expires_at=self.expires_at,
        )


@dataclass(frozen=True, slots=True)
class URLRecord:
    code: str
    destination: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and as_utc(self.expires_at) <= as_utc(now)
