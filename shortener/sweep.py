#!/usr/bin/env python3
"""Expiry sweep: retire links whose expiry has passed.

Resolution already treats expired links as not found; the sweep only keeps
the table small. Retired codes stay reserved and are never reassigned.

Usage::
    python -m shortener.sweep
    python -m shortener.sweep --before 2026-01-01T00:00:00+00:00
"""

import argparse
import asyncio
import datetime
import logging
import sys

from shortener.config import Settings, get_settings
from shortener.database import create_engine, create_session_factory
from shortener.models import utcnow
from shortener.sql_store import SQLMappingStore
from shortener.store import MappingStore

__all__ = ["sweep_expired", "main"]

logger = logging.getLogger("urlshortener")


async def sweep_expired(store: MappingStore, before: datetime.datetime | None = None) -> int:
    cutoff = before or utcnow()
    removed = await store.delete_expired(cutoff)
    logger.info(f"Retired {removed} expired links (cutoff {cutoff.isoformat()})")
    return removed


async def _run(settings: Settings, before: datetime.datetime | None) -> int:
    engine = create_engine(settings)
    store = SQLMappingStore(create_session_factory(engine), settings.STORE_TIMEOUT_SECONDS, engine)
    try:
        return await sweep_expired(store, before)
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Retire expired short links")
    parser.add_argument(
        "--before",
        type=datetime.datetime.fromisoformat,
        default=None,
        help="ISO-8601 cutoff (default: now, UTC)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO)
    removed = asyncio.run(_run(get_settings(), args.before))
    print(f"Retired {removed} expired links")
    return 0


if __name__ == "__main__":
    sys.exit(main())
