"""Finalizer — record the terminal state of a scanned task.

Each path performs three steps in order:

1. the terminal store write (FINISHED or FAILED, ``scan_end_ts = now``,
   ``scan_attempts + 1``);
2. tagging the file in storage with the result and timestamp;
3. notifying the task's channels plus the default channels.

Steps 2 and 3 are best-effort: their errors are logged and never undo the
committed store write.  When step 1 fails the error is logged, steps 2 and 3
are skipped, and the row stays SCANNING until the stale-task reaper returns
it to PENDING.  On the failure path ``scan_result`` and ``viruses`` keep
their previous values.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from bucketguard.core.av_engine import ScanVerdict
from bucketguard.core.errors import FatalConfigurationError
from bucketguard.core.notifier import NotifierHub
from bucketguard.core.storage import FileStorage
from bucketguard.core.task_store import TaskStore
from bucketguard.models.task import ScanResult, Task, now_ms

logger = logging.getLogger(__name__)


class Finalizer:
    def __init__(
        self,
        store: TaskStore,
        storage: FileStorage,
        notifier: NotifierHub,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._storage = storage
        self._notifier = notifier
        self._clock = clock

    async def succeed(self, task: Task, verdict: ScanVerdict) -> Task | None:
        """Mark *task* FINISHED with the verdict's result.

        Returns the updated row, or ``None`` when the store write failed.
        """
        result = ScanResult.INFECTED if verdict.is_infected else ScanResult.CLEAN
        ts = self._clock()
        try:
            updated = await self._store.set_finished(task.file_path, result, verdict.viruses, ts)
        except FatalConfigurationError:
            raise
        except Exception as exc:
            logger.error(
                "Failed to mark task FINISHED file=%s result=%s error=%r",
                task.file_path,
                result.value,
                exc,
            )
            return None

        logger.info(
            "Task FINISHED file=%s result=%s attempts=%d",
            task.file_path,
            result.value,
            updated.scan_attempts,
        )
        await self._publish(task, result.value, verdict.viruses, ts)
        return updated

    async def fail(self, task: Task, error: BaseException | None = None) -> Task | None:
        """Mark *task* FAILED.

        Returns the updated row, or ``None`` when the store write failed.
        """
        ts = self._clock()
        try:
            updated = await self._store.set_failed(task.file_path, ts)
        except FatalConfigurationError:
            raise
        except Exception as exc:
            logger.error("Failed to mark task FAILED file=%s error=%r", task.file_path, exc)
            return None

        logger.info(
            "Task FAILED file=%s attempts=%d cause=%r",
            task.file_path,
            updated.scan_attempts,
            error,
        )
        await self._publish(task, ScanResult.FAILED.value, (), ts)
        return updated

    async def _publish(self, task: Task, result: str, viruses: Iterable[str], ts: int) -> None:
        try:
            await self._storage.tag(task.file_path, result, ts)
        except Exception as exc:
            logger.warning("Failed to tag file=%s result=%s error=%r", task.file_path, result, exc)
        await self._notifier.notify_all(task.file_path, result, viruses, ts, task.notify_channels)
