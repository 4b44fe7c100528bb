"""Expiry sweep tests."""

import datetime

import pytest

from shortener.enums import InsertOutcome
from shortener.sweep import sweep_expired


@pytest.mark.asyncio
async def test_sweep_retires_only_expired_links(store, resolution, past, future) -> None:
    await store.try_insert("old0001", "https://example.com/old", past)
    await store.try_insert("new0001", "https://example.com/new", future)

    removed = await sweep_expired(store)

    assert removed == 1
    assert await resolution.resolve("old0001") is None
    assert await resolution.resolve("new0001") == "https://example.com/new"


@pytest.mark.asyncio
async def test_swept_code_stays_reserved(store, past) -> None:
    await store.try_insert("old0001", "https://example.com/old", past)
    await sweep_expired(store)

    assert await store.try_insert("old0001", "https://example.com/other") is InsertOutcome.ALREADY_EXISTS


@pytest.mark.asyncio
async def test_sweep_with_explicit_cutoff(store, future) -> None:
    await store.try_insert("new0001", "https://example.com/new", future)

    assert await sweep_expired(store, future - datetime.timedelta(minutes=1)) == 0
    assert await sweep_expired(store, future) == 1
