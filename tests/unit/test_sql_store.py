"""Unit tests for bucketguard/core/adapters/sql_store.py.

Runs against an in-memory SQLite database through aiosqlite, sharing one
connection via ``StaticPool`` so the schema survives between sessions.

Coverage targets:
* ``create`` upserts: a second create for the same path overwrites the row.
* ``list_by_states`` filters and orders by ``created_ts``.
* Guarded ``UPDATE ... WHERE scan_state`` → ``RaceLostError`` when no row
  matches, row untouched.
* Unconditional update of a missing row → ``TaskNotFoundError``.
* ``scan_attempts`` incremented in the same statement.
* Missing table → ``FatalConfigurationError``.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from bucketguard.core.adapters.sql_store import SQLTaskStore
from bucketguard.core.errors import FatalConfigurationError, RaceLostError, TaskNotFoundError
from bucketguard.models.task import ScanResult, ScanState, Task

FILE = "s3://bucket/a.csv"


def _make_store() -> SQLTaskStore:
    return SQLTaskStore.from_url(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest_asyncio.fixture
async def sql_store():
    store = _make_store()
    await store.create_schema()
    yield store
    await store.close()


class TestCreateAndQuery:
    @pytest.mark.asyncio
    async def test_create_then_get(self, sql_store: SQLTaskStore) -> None:
        task = Task(file_path=FILE, created_ts=1, size_mb=0.5, file_hash="e", notify_channels=("c",))

        await sql_store.create(task)

        assert await sql_store.get(FILE) == task

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, sql_store: SQLTaskStore) -> None:
        assert await sql_store.get(FILE) is None

    @pytest.mark.asyncio
    async def test_create_overwrites_existing_row(self, sql_store: SQLTaskStore) -> None:
        await sql_store.create(Task(file_path=FILE, created_ts=1, size_mb=1.0))
        await sql_store.set_scanning(FILE, 10)

        await sql_store.create(Task(file_path=FILE, created_ts=2, size_mb=2.0))

        row = await sql_store.get(FILE)
        assert row.scan_state is ScanState.PENDING
        assert row.size_mb == 2.0
        assert row.created_ts == 2

    @pytest.mark.asyncio
    async def test_list_by_states_filters_and_orders(self, sql_store: SQLTaskStore) -> None:
        await sql_store.create(Task(file_path="s3://b/3", created_ts=3))
        await sql_store.create(Task(file_path="s3://b/1", created_ts=1))
        await sql_store.create(Task(file_path="s3://b/2", created_ts=2, scan_state=ScanState.SCANNING))
        await sql_store.create(Task(file_path="s3://b/0", created_ts=0, scan_state=ScanState.FAILED))

        tasks = await sql_store.list_by_states(ScanState.PENDING, ScanState.SCANNING)

        assert [t.file_path for t in tasks] == ["s3://b/1", "s3://b/2", "s3://b/3"]


class TestTransitions:
    @pytest.mark.asyncio
    async def test_claim_then_finish(self, sql_store: SQLTaskStore) -> None:
        await sql_store.create(Task(file_path=FILE, created_ts=1))

        claimed = await sql_store.set_scanning(FILE, 10)
        finished = await sql_store.set_finished(FILE, ScanResult.INFECTED, ["Eicar"], 20)

        assert claimed.scan_state is ScanState.SCANNING
        assert claimed.scan_start_ts == 10
        assert finished.scan_state is ScanState.FINISHED
        assert finished.scan_result is ScanResult.INFECTED
        assert finished.viruses == ("Eicar",)
        assert finished.scan_end_ts == 20
        assert finished.scan_attempts == 1

    @pytest.mark.asyncio
    async def test_second_claim_loses_race(self, sql_store: SQLTaskStore) -> None:
        await sql_store.create(Task(file_path=FILE, created_ts=1))
        await sql_store.set_scanning(FILE, 10)

        with pytest.raises(RaceLostError):
            await sql_store.set_scanning(FILE, 11)

        assert (await sql_store.get(FILE)).scan_start_ts == 10

    @pytest.mark.asyncio
    async def test_failed_keeps_result_and_counts_attempt(self, sql_store: SQLTaskStore) -> None:
        await sql_store.create(Task(file_path=FILE, created_ts=1, scan_attempts=2))
        await sql_store.set_scanning(FILE, 10)

        failed = await sql_store.set_failed(FILE, 20)

        assert failed.scan_state is ScanState.FAILED
        assert failed.scan_result is ScanResult.PENDING
        assert failed.scan_attempts == 3

    @pytest.mark.asyncio
    async def test_reap_of_finished_row_loses_race(self, sql_store: SQLTaskStore) -> None:
        await sql_store.create(Task(file_path=FILE, created_ts=1, scan_state=ScanState.FINISHED))

        with pytest.raises(RaceLostError):
            await sql_store.set_pending(FILE, expected=ScanState.SCANNING)

        assert (await sql_store.get(FILE)).scan_state is ScanState.FINISHED

    @pytest.mark.asyncio
    async def test_unconditional_update_of_missing_row(self, sql_store: SQLTaskStore) -> None:
        with pytest.raises(TaskNotFoundError):
            await sql_store.set_failed(FILE, 20)

        assert await sql_store.get(FILE) is None


@pytest.mark.asyncio
async def test_missing_table_is_fatal() -> None:
    store = _make_store()
    try:
        with pytest.raises(FatalConfigurationError):
            await store.list_by_states(ScanState.PENDING)
    finally:
        await store.close()
