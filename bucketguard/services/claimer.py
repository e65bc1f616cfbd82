"""TaskClaimer — take ownership of the oldest pending task.

The claim is a single guarded write (PENDING → SCANNING, ``scan_start_ts =
now``) that only succeeds while the row is still PENDING.  When several
workers race for the same task the store lets exactly one write through and
the others get :class:`~bucketguard.core.errors.RaceLostError`, which is
reported here as "no claim".  Nothing else provides mutual exclusion between
workers.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from bucketguard.core.errors import FILE_NOT_EXIST_CODE, FILE_NOT_EXIST_MESSAGE, RaceLostError
from bucketguard.core.notifier import NotifierHub
from bucketguard.core.storage import FileStorage
from bucketguard.core.task_store import TaskStore
from bucketguard.models.task import Task, now_ms

logger = logging.getLogger(__name__)


class TaskClaimer:
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

    async def claim(self, pending: Sequence[Task]) -> Task | None:
        """Try to claim ``pending[0]``.

        Args:
            pending: PENDING tasks ordered by ascending ``created_ts``.

        Returns:
            The task as SCANNING, or ``None`` when nothing was claimed (empty
            snapshot, file gone from storage, or another worker won).

        Raises:
            Any store or storage error other than a lost race.
        """
        if not pending:
            return None
        candidate = pending[0]
        file_path = candidate.file_path

        metadata = await self._storage.get_metadata(file_path)
        if metadata is None:
            await self._notifier.notify_error_all(
                file_path,
                FILE_NOT_EXIST_CODE,
                FILE_NOT_EXIST_MESSAGE,
                self._clock(),
                candidate.notify_channels,
            )
            logger.error("Claim skipped, file does not exist file=%s", file_path)
            return None

        try:
            task = await self._store.set_scanning(file_path, self._clock())
        except RaceLostError:
            logger.warning("Claim lost to another worker file=%s", file_path)
            return None

        logger.info("Task claimed file=%s attempts=%d", file_path, task.scan_attempts)
        return task
