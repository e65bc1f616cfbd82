"""StaleTaskReaper — return abandoned SCANNING tasks to PENDING.

A task stays SCANNING forever when the worker that claimed it dies.  On every
poll tick each worker checks the SCANNING snapshot and sends back to PENDING
any task whose ``scan_start_ts`` is older than ``stale_after_seconds``.

The write is guarded by the SCANNING state, so a task that reached FINISHED
or FAILED after the snapshot was taken is never re-opened, and two workers
reaping the same task produce a single transition.  ``scan_attempts`` is not
changed.  There is no limit on how often a task may be reaped.

``scan_timeout`` should be shorter than ``stale_after_seconds``; otherwise a
scan that is still running can be reaped and claimed a second time.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from prometheus_client import Counter

from bucketguard.core.errors import FatalConfigurationError, RaceLostError
from bucketguard.core.task_store import TaskStore
from bucketguard.models.task import ScanState, Task, now_ms

logger = logging.getLogger(__name__)

stale_reclaims_total = Counter(
    "bucketguard_stale_reclaims_total",
    "The number of stale SCANNING tasks returned to PENDING",
)


class StaleTaskReaper:
    def __init__(
        self,
        store: TaskStore,
        *,
        stale_after_seconds: float,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._stale_after_ms = int(stale_after_seconds * 1000)
        self._clock = clock

    async def reap(self, scanning: Iterable[Task]) -> list[Task]:
        """Reclaim every stale task in *scanning*; return the reclaimed rows.

        Errors on one task are logged and the remaining tasks are still
        processed.  :class:`FatalConfigurationError` propagates.
        """
        now = self._clock()
        reclaimed: list[Task] = []
        for task in scanning:
            if not task.is_stale(now, self._stale_after_ms):
                continue
            try:
                updated = await self._store.set_pending(task.file_path, expected=ScanState.SCANNING)
            except RaceLostError:
                logger.debug("Stale task already moved on file=%s", task.file_path)
                continue
            except FatalConfigurationError:
                raise
            except Exception as exc:
                logger.error("Failed to reclaim stale task file=%s error=%r", task.file_path, exc)
                continue

            stale_reclaims_total.inc()
            logger.info(
                "Stale task returned to PENDING file=%s scan_start_ts=%d attempts=%d",
                task.file_path,
                task.scan_start_ts,
                updated.scan_attempts,
            )
            reclaimed.append(updated)
        return reclaimed
