"""IngestionPipeline — turn scan requests into durable PENDING tasks.

Queue path (:meth:`IngestionPipeline.handle`)
---------------------------------------------
1. Look the file up in storage.  When it does not exist, send a
   ``FILE_NOT_EXIST`` error notification to the message's channels plus the
   default channels, delete the message and stop.  A missing file is never
   retried.
2. Upsert a PENDING task row (size and ETag taken from the metadata).
3. Only after the row is written, delete the queue message.

The queue delivers at least once.  A crash between steps 2 and 3 redelivers
the message and step 2 overwrites the row with identical content, so
ingestion is idempotent.  Failures in step 1 or 2 leave the message in the
queue for redelivery; a failure in step 3 is only logged.

API path (:meth:`IngestionPipeline.submit`)
-------------------------------------------
Same checks and write, but a missing file raises
:class:`~bucketguard.core.errors.FileNotInStorageError` so the HTTP layer can
answer 422 instead of notifying.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from bucketguard.core.errors import (
    FILE_NOT_EXIST_CODE,
    FILE_NOT_EXIST_MESSAGE,
    FatalConfigurationError,
    FileNotInStorageError,
)
from bucketguard.core.notifier import NotifierHub
from bucketguard.core.queue import QueueMessage, TaskQueue
from bucketguard.core.storage import FileMetadata, FileStorage
from bucketguard.core.task_store import TaskStore
from bucketguard.models.task import Task, bytes_to_mb, new_pending_task, now_ms

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Creates PENDING tasks from queue messages and API requests.

    Args:
        store: Task store the rows are written to.
        storage: Storage consulted for file existence and metadata.
        notifier: Hub used for ``FILE_NOT_EXIST`` error notifications.
        queue: Queue whose messages are acknowledged after a successful
            write.  ``None`` when no queue is configured.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        store: TaskStore,
        storage: FileStorage,
        notifier: NotifierHub,
        queue: TaskQueue | None = None,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._storage = storage
        self._notifier = notifier
        self._queue = queue
        self._clock = clock

    async def handle(self, message: QueueMessage) -> Task | None:
        """Ingest one queue message.  Returns the created task, if any.

        Never raises for transient errors; they are logged and the message is
        left for redelivery.  :class:`FatalConfigurationError` propagates.
        """
        file_path = message.file_path
        try:
            metadata = await self._storage.get_metadata(file_path)
        except Exception as exc:
            logger.error("Ingestion metadata lookup failed file=%s error=%r", file_path, exc)
            return None

        if metadata is None:
            await self._notifier.notify_error_all(
                file_path,
                FILE_NOT_EXIST_CODE,
                FILE_NOT_EXIST_MESSAGE,
                self._clock(),
                message.notify_channels,
            )
            await self._acknowledge(message)
            logger.error("Ingestion skipped, file does not exist file=%s", file_path)
            return None

        try:
            task = await self._create(file_path, metadata, message.notify_channels)
        except FatalConfigurationError:
            raise
        except Exception as exc:
            logger.error("Ingestion failed to write task file=%s error=%r", file_path, exc)
            return None

        await self._acknowledge(message)
        return task

    async def submit(self, file_path: str, notify_channels: Iterable[str] = ()) -> Task:
        """Create a PENDING task for *file_path* on behalf of an API caller.

        Raises:
            FileNotInStorageError: when *file_path* does not exist.
        """
        metadata = await self._storage.get_metadata(file_path)
        if metadata is None:
            logger.error("Task submission rejected, file does not exist file=%s", file_path)
            raise FileNotInStorageError(file_path)
        return await self._create(file_path, metadata, notify_channels)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _create(
        self,
        file_path: str,
        metadata: FileMetadata,
        notify_channels: Iterable[str],
    ) -> Task:
        task = new_pending_task(
            file_path,
            size_mb=bytes_to_mb(metadata.size_bytes),
            file_hash=metadata.etag,
            notify_channels=tuple(notify_channels),
            created_ts=self._clock(),
        )
        await self._store.create(task)
        logger.info(
            "Task set to PENDING file=%s size_mb=%.3f store=%s",
            file_path,
            task.size_mb,
            self._store.backend_name,
        )
        return task

    async def _acknowledge(self, message: QueueMessage) -> None:
        if self._queue is None:
            return
        try:
            await self._queue.delete(message)
            logger.debug("Queue message deleted file=%s", message.file_path)
        except Exception as exc:
            logger.error(
                "Failed to delete queue message file=%s error=%r",
                message.file_path,
                exc,
            )
