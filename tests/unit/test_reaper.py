"""Unit tests for bucketguard/services/reaper.py.

Coverage targets:
* Stale SCANNING task → PENDING, ``scan_attempts`` unchanged, counter bumped.
* Fresh SCANNING task untouched.
* Task that finished after the snapshot was taken is never re-opened.
* Error on one task does not stop the others.
* ``FatalConfigurationError`` propagates.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from prometheus_client import REGISTRY

from bucketguard.core.adapters.memory_store import MemoryTaskStore
from bucketguard.core.errors import FatalConfigurationError
from bucketguard.models.task import ScanState, Task
from bucketguard.services.reaper import StaleTaskReaper

HOUR_MS = 3_600_000


def _scanning(file_path: str, started: int, attempts: int = 0) -> Task:
    return Task(
        file_path=file_path,
        scan_state=ScanState.SCANNING,
        created_ts=0,
        scan_start_ts=started,
        scan_attempts=attempts,
    )


def _reclaims() -> float:
    return REGISTRY.get_sample_value("bucketguard_stale_reclaims_total") or 0.0


class TestReap:
    @pytest.mark.asyncio
    async def test_stale_task_returns_to_pending(self, clock) -> None:
        stale = _scanning("s3://b/stale", clock.now - HOUR_MS - 1, attempts=2)
        fresh = _scanning("s3://b/fresh", clock.now - 1_000)
        store = MemoryTaskStore([stale, fresh])
        reaper = StaleTaskReaper(store, stale_after_seconds=3600, clock=clock)
        before = _reclaims()

        reclaimed = await reaper.reap([stale, fresh])

        assert [t.file_path for t in reclaimed] == ["s3://b/stale"]
        row = await store.get("s3://b/stale")
        assert row.scan_state is ScanState.PENDING
        assert row.scan_attempts == 2
        assert (await store.get("s3://b/fresh")).scan_state is ScanState.SCANNING
        assert _reclaims() == before + 1

    @pytest.mark.asyncio
    async def test_task_finished_after_snapshot_is_not_reopened(self, clock) -> None:
        snapshot = _scanning("s3://b/a", clock.now - 2 * HOUR_MS)
        store = MemoryTaskStore([snapshot.evolve(scan_state=ScanState.FINISHED)])
        reaper = StaleTaskReaper(store, stale_after_seconds=3600, clock=clock)

        assert await reaper.reap([snapshot]) == []
        assert (await store.get("s3://b/a")).scan_state is ScanState.FINISHED

    @pytest.mark.asyncio
    async def test_error_on_one_task_does_not_stop_others(self, clock) -> None:
        first = _scanning("s3://b/1", 0)
        second = _scanning("s3://b/2", 0)
        store = MemoryTaskStore([first, second])
        original = store.set_pending

        async def flaky(file_path, **kwargs):
            if file_path == "s3://b/1":
                raise RuntimeError("throttled")
            return await original(file_path, **kwargs)

        store.set_pending = flaky
        reaper = StaleTaskReaper(store, stale_after_seconds=3600, clock=clock)

        reclaimed = await reaper.reap([first, second])

        assert [t.file_path for t in reclaimed] == ["s3://b/2"]

    @pytest.mark.asyncio
    async def test_missing_table_propagates(self, clock) -> None:
        stale = _scanning("s3://b/a", 0)
        store = MemoryTaskStore([stale])
        store.set_pending = AsyncMock(side_effect=FatalConfigurationError("no table"))
        reaper = StaleTaskReaper(store, stale_after_seconds=3600, clock=clock)

        with pytest.raises(FatalConfigurationError):
            await reaper.reap([stale])

    @pytest.mark.asyncio
    async def test_concurrent_reapers_reclaim_once(self, clock) -> None:
        stale = _scanning("s3://b/a", 0)
        store = MemoryTaskStore([stale])
        reapers = [StaleTaskReaper(store, stale_after_seconds=3600, clock=clock) for _ in range(3)]

        results = await asyncio.gather(*(r.reap([stale]) for r in reapers))

        assert sum(len(r) for r in results) == 1
