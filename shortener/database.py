"""Database engine and session factory for the SQL mapping store.

This module provides SQLAlchemy async engine setup and schema lifecycle
operations using PostgreSQL as the backend.

Flow Diagram — Store Operation
==============================
::
    ┌─────────────┐
    │ SQLMapping  │
    │ Store call  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Open async  │
    │ session     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Execute     │
    │ statement   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close  │
    │ (context)   │
    └─────────────┘

How to Use
===========
**Step 1 — Build on startup**::
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    await init_db(engine)  # Creates tables

**Step 2 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- One engine per process, created from explicit settings.
- Connection pooling is configured for production workloads.
- Tables are created automatically on application startup.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine():  Builds the async engine from settings.
    create_session_factory():  Builds the session factory for an engine.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import Settings

__all__ = ["Base", "create_engine", "create_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=settings.STORE_TIMEOUT_SECONDS,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
