"""Mapping store contract tests: in-memory backend and SQL backend with a mocked session."""

import asyncio
import datetime
import socket
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.enums import InsertOutcome
from shortener.exceptions import TransientStoreFailure
from shortener.models import ShortLink
from shortener.sql_store import SQLMappingStore
from shortener.store import InMemoryMappingStore


# ============================================================================
# IN-MEMORY BACKEND
# ============================================================================


class TestInMemoryMappingStore:
    @pytest.mark.asyncio
    async def test_second_insert_does_not_overwrite(self) -> None:
        store = InMemoryMappingStore()

        first = await store.try_insert("abc1234", "https://example.com/first")
        second = await store.try_insert("abc1234", "https://example.com/second")

        assert first is InsertOutcome.INSERTED
        assert second is InsertOutcome.ALREADY_EXISTS
        record = await store.lookup("abc1234")
        assert record.destination == "https://example.com/first"

    @pytest.mark.asyncio
    async def test_concurrent_inserts_have_one_winner(self) -> None:
        store = InMemoryMappingStore()

        outcomes = await asyncio.gather(
            *(store.try_insert("race000", f"https://example.com/{i}") for i in range(25))
        )

        assert outcomes.count(InsertOutcome.INSERTED) == 1
        assert outcomes.count(InsertOutcome.ALREADY_EXISTS) == 24
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_lookup_unknown_code(self) -> None:
        assert await InMemoryMappingStore().lookup("zzzz") is None

    @pytest.mark.asyncio
    async def test_record_fields(self, future) -> None:
        store = InMemoryMappingStore()
        await store.try_insert("abc1234", "https://example.com/a", future)

        record = await store.lookup("abc1234")

        assert record.code == "abc1234"
        assert record.expires_at == future
        assert record.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_deleted_code_is_never_reassigned(self) -> None:
        store = InMemoryMappingStore()
        await store.try_insert("abc1234", "https://example.com/a")

        assert await store.delete("abc1234") is True
        assert await store.lookup("abc1234") is None
        assert await store.try_insert("abc1234", "https://example.com/b") is InsertOutcome.ALREADY_EXISTS
        assert await store.delete("abc1234") is False

    @pytest.mark.asyncio
    async def test_delete_expired(self, past, future) -> None:
        store = InMemoryMappingStore()
        await store.try_insert("old0001", "https://example.com/old", past)
        await store.try_insert("new0001", "https://example.com/new", future)
        await store.try_insert("forever", "https://example.com/forever")

        removed = await store.delete_expired()

        assert removed == 1
        assert await store.lookup("old0001") is None
        assert await store.lookup("new0001") is not None
        assert await store.lookup("forever") is not None
        assert await store.try_insert("old0001", "https://example.com/x") is InsertOutcome.ALREADY_EXISTS


# ============================================================================
# SQL BACKEND
# ============================================================================


def _session_factory(session: AsyncMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


class _DriverError(Exception):
    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


@pytest.fixture
def mock_session() -> AsyncMock:
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock()
    return session


@pytest.fixture
def sql_store(mock_session) -> SQLMappingStore:
    return SQLMappingStore(_session_factory(mock_session), timeout=0.5)


class TestSQLMappingStore:
    @pytest.mark.asyncio
    async def test_insert_commits_row(self, sql_store, mock_session) -> None:
        outcome = await sql_store.try_insert("abc1234", "https://example.com/a")

        assert outcome is InsertOutcome.INSERTED
        row = mock_session.add.call_args.args[0]
        assert isinstance(row, ShortLink)
        assert row.code == "abc1234"
        assert row.destination == "https://example.com/a"
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unique_violation_is_already_exists(self, sql_store, mock_session) -> None:
        mock_session.commit.side_effect = IntegrityError("INSERT", {}, _DriverError("duplicate key", "23505"))

        outcome = await sql_store.try_insert("abc1234", "https://example.com/a")

        assert outcome is InsertOutcome.ALREADY_EXISTS
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_integrity_errors_propagate(self, sql_store, mock_session) -> None:
        mock_session.commit.side_effect = IntegrityError("INSERT", {}, _DriverError("null value", "23502"))

        with pytest.raises(IntegrityError):
            await sql_store.try_insert("abc1234", "https://example.com/a")
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            OSError("Multiple exceptions: [Errno 111] Connect call failed"),
            socket.gaierror(-2, "Name or service not known"),
            ConnectionRefusedError(111, "Connection refused"),
        ],
    )
    async def test_unreachable_database_is_transient(self, sql_store, mock_session, error) -> None:
        mock_session.execute.side_effect = error

        with pytest.raises(TransientStoreFailure) as excinfo:
            await sql_store.lookup("abc1234")
        assert excinfo.value.operation == "lookup"
        assert excinfo.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_operational_error_is_transient(self, sql_store, mock_session) -> None:
        mock_session.commit.side_effect = OperationalError("INSERT", {}, Exception("connection reset"))

        with pytest.raises(TransientStoreFailure) as excinfo:
            await sql_store.try_insert("abc1234", "https://example.com/a")
        assert excinfo.value.operation == "try_insert"

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, mock_session) -> None:
        async def hang(*args, **kwargs):
            await asyncio.sleep(5)

        mock_session.execute.side_effect = hang
        store = SQLMappingStore(_session_factory(mock_session), timeout=0.01)

        with pytest.raises(TransientStoreFailure) as excinfo:
            await store.lookup("abc1234")
        assert excinfo.value.operation == "lookup"

    @pytest.mark.asyncio
    async def test_lookup_returns_record(self, sql_store, mock_session) -> None:
        created = datetime.datetime(2026, 1, 1, tzinfo=datetime.UTC)
        result = MagicMock()
        result.scalar_one_or_none.return_value = ShortLink(
            code="abc1234",
            destination="https://example.com/a",
            created_at=created,
            expires_at=None,
        )
        mock_session.execute.return_value = result

        record = await sql_store.lookup("abc1234")

        assert record.code == "abc1234"
        assert record.destination == "https://example.com/a"
        assert record.created_at == created
        assert record.expires_at is None

    @pytest.mark.asyncio
    async def test_lookup_missing(self, sql_store, mock_session) -> None:
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_session.execute.return_value = result

        assert await sql_store.lookup("zzzz") is None

    @pytest.mark.asyncio
    async def test_delete_reports_retired_rows(self, sql_store, mock_session) -> None:
        result = MagicMock()
        result.rowcount = 1
        mock_session.execute.return_value = result

        assert await sql_store.delete("abc1234") is True
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_expired_returns_count(self, sql_store, mock_session) -> None:
        result = MagicMock()
        result.rowcount = 3
        mock_session.execute.return_value = result

        assert await sql_store.delete_expired() == 3

    @pytest.mark.asyncio
    async def test_ping_runs_probe(self, sql_store, mock_session) -> None:
        await sql_store.ping()

        mock_session.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ping_failure_is_transient(self, sql_store, mock_session) -> None:
        mock_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))

        with pytest.raises(TransientStoreFailure) as excinfo:
            await sql_store.ping()
        assert excinfo.value.operation == "ping"
