"""Amazon SQS task-queue adapter.

:class:`SQSQueue` long-polls an SQS queue and turns message bodies of the
form::

    {"filePath": "s3://bucket/some/file.csv", "notifyChannels": ["arn:aws:sns:..."]}

into :class:`~bucketguard.core.queue.QueueMessage` objects.

Poison messages
---------------
A body that is not JSON, or that lacks ``filePath``, can never succeed.  It
is logged at WARNING, deleted, and the remaining messages of the batch are
still processed.

Errors
------
* ``QueueDoesNotExist`` / ``AWS.SimpleQueueService.NonExistentQueue`` raise
  :class:`~bucketguard.core.errors.FatalConfigurationError` out of
  :meth:`SQSQueue.listen`.
* Any other receive error is logged and the listener sleeps for
  ``error_backoff`` seconds before polling again, so a broken network does
  not turn into a hot loop of failing calls.
* An exception from the handler is logged; the message stays in the queue
  and becomes visible again after the visibility timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.exceptions import ClientError
from pydantic import ValidationError

from bucketguard.core.errors import FatalConfigurationError
from bucketguard.core.queue import MessageHandler, QueueMessage, TaskQueue
from bucketguard.schemas.task import TaskMessage

logger = logging.getLogger(__name__)

_QUEUE_MISSING_CODES = frozenset(
    {"QueueDoesNotExist", "AWS.SimpleQueueService.NonExistentQueue"}
)


class SQSQueue(TaskQueue):
    """:class:`~bucketguard.core.queue.TaskQueue` backed by Amazon SQS.

    Args:
        queue_url: URL of the SQS queue.
        region_name: AWS region.  ``None`` uses the boto3 default chain.
        wait_time_seconds: Long-poll duration per ``ReceiveMessage`` call.
        visibility_timeout: Seconds a received message stays hidden.
        max_messages: Maximum messages per receive (SQS caps this at 10).
        error_backoff: Seconds to wait after a failed receive.
        client: Pre-built boto3 SQS client (tests pass a mock).
    """

    def __init__(
        self,
        queue_url: str,
        *,
        region_name: str | None = None,
        wait_time_seconds: int = 20,
        visibility_timeout: int = 300,
        max_messages: int = 10,
        error_backoff: float = 10.0,
        client: Any | None = None,
    ) -> None:
        self._queue_url = queue_url
        self._region_name = region_name
        self._wait_time_seconds = wait_time_seconds
        self._visibility_timeout = visibility_timeout
        self._max_messages = max_messages
        self._error_backoff = error_backoff
        self._client = client if client is not None else self._build_client()
        self._stop_event = asyncio.Event()

    def _build_client(self) -> Any:
        return boto3.client("sqs", region_name=self._region_name)

    # ------------------------------------------------------------------
    # TaskQueue interface
    # ------------------------------------------------------------------

    async def listen(self, handler: MessageHandler) -> None:
        self._stop_event.clear()
        logger.info("SQS listener started queue=%s", self._queue_url)
        while not self._stop_event.is_set():
            try:
                messages = await self.receive()
            except FatalConfigurationError:
                raise
            except Exception as exc:
                logger.error(
                    "SQS receive failed queue=%s error=%r; retrying in %.1fs",
                    self._queue_url,
                    exc,
                    self._error_backoff,
                )
                await self._sleep(self._error_backoff)
                continue

            for message in messages:
                try:
                    await handler(message)
                except FatalConfigurationError:
                    raise
                except Exception:
                    logger.exception("SQS handler failed file=%s", message.file_path)
        logger.info("SQS listener stopped queue=%s", self._queue_url)

    async def receive(self) -> list[QueueMessage]:
        """Run one long-poll and return the valid messages of the batch.

        Poison messages in the batch are deleted before returning.
        """
        try:
            response = await asyncio.to_thread(
                self._client.receive_message,
                QueueUrl=self._queue_url,
                MaxNumberOfMessages=self._max_messages,
                WaitTimeSeconds=self._wait_time_seconds,
                VisibilityTimeout=self._visibility_timeout,
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _QUEUE_MISSING_CODES:
                raise FatalConfigurationError(
                    f"SQS queue {self._queue_url!r} does not exist"
                ) from exc
            raise

        valid: list[QueueMessage] = []
        for raw in response.get("Messages", []):
            message = self._parse(raw)
            if message is None:
                await self._discard(raw)
                continue
            valid.append(message)
        return valid

    async def delete(self, message: QueueMessage) -> None:
        await self._delete_raw(message.raw)

    def stop(self) -> None:
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(raw: dict[str, Any]) -> QueueMessage | None:
        try:
            body = TaskMessage.model_validate_json(raw.get("Body") or "")
        except ValidationError as exc:
            logger.warning(
                "SQS poison message discarded message_id=%s body=%r errors=%d",
                raw.get("MessageId"),
                raw.get("Body"),
                exc.error_count(),
            )
            return None
        return QueueMessage(
            file_path=body.file_path,
            notify_channels=tuple(body.notify_channels),
            raw=raw,
        )

    async def _discard(self, raw: dict[str, Any]) -> None:
        try:
            await self._delete_raw(raw)
        except Exception as exc:
            logger.error(
                "SQS failed to delete poison message message_id=%s error=%r",
                raw.get("MessageId"),
                exc,
            )

    async def _delete_raw(self, raw: dict[str, Any]) -> None:
        await asyncio.to_thread(
            self._client.delete_message,
            QueueUrl=self._queue_url,
            ReceiptHandle=raw["ReceiptHandle"],
        )

    async def _sleep(self, seconds: float) -> None:
        """Wait *seconds* or until :meth:`stop` is called, whichever is first."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
