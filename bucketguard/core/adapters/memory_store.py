"""Process-local task store for development and tests.

:class:`MemoryTaskStore` keeps rows in a dict.  A guarded transition reads and
writes the row without suspending in between, so within one event loop it is
as atomic as the conditional write of a real backend.  Several schedulers
sharing one instance therefore reproduce the multi-worker claim race.

Nothing is persisted; do not use this backend for more than one process.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from bucketguard.core.errors import RaceLostError, TaskNotFoundError
from bucketguard.core.task_store import TaskStore
from bucketguard.models.task import ScanState, Task

logger = logging.getLogger(__name__)


class MemoryTaskStore(TaskStore):
    """Dict-backed :class:`~bucketguard.core.task_store.TaskStore`."""

    backend_name = "memory"

    def __init__(self, tasks: list[Task] | None = None) -> None:
        self._rows: dict[str, Task] = {t.file_path: t for t in tasks or ()}

    def __len__(self) -> int:
        return len(self._rows)

    async def list_by_states(self, *states: ScanState) -> list[Task]:
        await asyncio.sleep(0)
        wanted = set(states)
        rows = [t for t in self._rows.values() if t.scan_state in wanted]
        return sorted(rows, key=lambda t: t.created_ts)

    async def get(self, file_path: str) -> Task | None:
        await asyncio.sleep(0)
        return self._rows.get(file_path)

    async def create(self, task: Task) -> Task:
        await asyncio.sleep(0)
        self._rows[task.file_path] = task
        logger.debug("MemoryTaskStore: upserted file=%s state=%s", task.file_path, task.scan_state.value)
        return task

    async def _write(
        self,
        file_path: str,
        new_state: ScanState,
        expected: ScanState | None,
        increment_attempts: bool,
        fields: dict[str, Any],
    ) -> Task:
        # Yield before the critical section, never inside it.
        await asyncio.sleep(0)

        current = self._rows.get(file_path)
        if current is None:
            if expected is not None:
                raise RaceLostError(file_path, expected.value)
            raise TaskNotFoundError(file_path)
        if expected is not None and current.scan_state is not expected:
            raise RaceLostError(file_path, expected.value)

        attempts = current.scan_attempts + (1 if increment_attempts else 0)
        updated = current.evolve(scan_state=new_state, scan_attempts=attempts, **fields)
        self._rows[file_path] = updated
        return updated
