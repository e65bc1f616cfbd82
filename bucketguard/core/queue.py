"""Abstract task-queue interface.

A :class:`TaskQueue` delivers scan requests at least once.  Each delivered
message is validated and handed to a handler as a :class:`QueueMessage`; the
handler decides when the message may be deleted (after the task row has been
written).  Messages that cannot be validated are deleted by the queue itself
and never reach the handler.

Concrete implementation: :class:`~bucketguard.core.adapters.sqs_queue.SQSQueue`.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Awaitable, Callable


@dataclass(frozen=True)
class QueueMessage:
    """A validated scan request.

    Attributes:
        file_path: Storage URI of the file to scan.
        notify_channels: Extra notification destinations for this task.
        raw: Backend message object, needed by :meth:`TaskQueue.delete`.
    """

    file_path: str
    notify_channels: tuple[str, ...] = ()
    raw: Any = None


MessageHandler = Callable[[QueueMessage], Awaitable[None]]


class TaskQueue(abc.ABC):
    """Source of scan requests."""

    @abc.abstractmethod
    async def listen(self, handler: MessageHandler) -> None:
        """Receive messages and pass each valid one to *handler*.

        Runs until :meth:`stop` is called.  Transient receive errors are
        logged and retried; a missing queue raises
        :class:`~bucketguard.core.errors.FatalConfigurationError`.
        """

    @abc.abstractmethod
    async def delete(self, message: QueueMessage) -> None:
        """Acknowledge *message* so it is not delivered again."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Ask :meth:`listen` to return after the current receive."""
