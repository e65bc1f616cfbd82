"""Process runtime: the collaborators and loops of one worker process.

:func:`build_runtime` is called once at process start.  It selects the
adapters from the settings and wires the orchestrator services together.  The
resulting :class:`Runtime` is passed explicitly to the headless runner
(:mod:`bucketguard.worker`) and to the API (``app.state.runtime``); there are
no module-level collaborator singletons.

Lifecycle::

    runtime = build_runtime(settings)
    await runtime.start()      # engine health check, scheduler, queue listener
    await runtime.wait()       # returns or raises when a loop stops
    await runtime.shutdown()   # graceful shutdown, releases the store
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from bucketguard.config import Settings
from bucketguard.core import factory
from bucketguard.core.av_engine import AVEngineAdapter
from bucketguard.core.notifier import NotifierHub
from bucketguard.core.queue import TaskQueue
from bucketguard.core.storage import FileStorage
from bucketguard.core.task_store import TaskStore
from bucketguard.models.task import now_ms
from bucketguard.services.claimer import TaskClaimer
from bucketguard.services.executor import ScanExecutor
from bucketguard.services.finalizer import Finalizer
from bucketguard.services.ingestion import IngestionPipeline
from bucketguard.services.reaper import StaleTaskReaper
from bucketguard.workers.scheduler import PollScheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for an entry point."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # boto3 logs every request at INFO once the root level allows it.
    for name in ("boto3", "botocore", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


class Runtime:
    """Collaborators, orchestrator services and background loops of a process."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: TaskStore,
        storage: FileStorage,
        notifier: NotifierHub,
        engine: AVEngineAdapter,
        queue: TaskQueue | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings
        self.store = store
        self.storage = storage
        self.notifier = notifier
        self.engine = engine
        self.queue = queue

        self.ingestion = IngestionPipeline(store, storage, notifier, queue, clock=clock)
        self.scheduler = PollScheduler(
            store,
            TaskClaimer(store, storage, notifier, clock=clock),
            ScanExecutor(storage, engine, settings.SCAN_TIMEOUT_SECONDS),
            Finalizer(store, storage, notifier, clock=clock),
            StaleTaskReaper(store, stale_after_seconds=settings.MARK_STALE_AFTER_SECONDS, clock=clock),
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            busy_interval=settings.busy_poll_interval,
        )

        self._scheduler_task: asyncio.Task | None = None
        self._listener_task: asyncio.Task | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._scheduler_task is not None and not self._scheduler_task.done()

    async def start(self, *, initialize_engine: bool = True) -> None:
        """Start the scheduler and, when configured, the queue listener.

        Raises:
            bucketguard.core.errors.EngineUnavailableError: when the engine
                never passes its health check.
        """
        if self.running:
            logger.warning("Worker already running, start ignored")
            return
        if initialize_engine:
            await self.engine.initialize()
        logger.info(
            "Starting worker store=%s queue=%s notifiers=%s environment=%s",
            self.store.backend_name,
            type(self.queue).__name__ if self.queue is not None else "none",
            ",".join(p.name for p in self.notifier.providers) or "none",
            self.settings.ENVIRONMENT,
        )
        self._scheduler_task = asyncio.create_task(self.scheduler.run(), name="bucketguard-scheduler")
        if self.queue is not None:
            self._listener_task = asyncio.create_task(
                self.queue.listen(self.ingestion.handle),
                name="bucketguard-queue-listener",
            )

    async def wait(self) -> None:
        """Return when the scheduler or the queue listener stops.

        Re-raises the error that stopped it, e.g.
        :class:`~bucketguard.core.errors.FatalConfigurationError`.
        """
        tasks = [t for t in (self._scheduler_task, self._listener_task) if t is not None]
        if not tasks:
            return
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]

    async def shutdown(self) -> None:
        """Stop the loops, return the in-flight task to PENDING, close the store."""
        if self._closed:
            return
        self._closed = True
        if self.queue is not None:
            self.queue.stop()
        await self.scheduler.shutdown()

        for task in (self._listener_task, self._scheduler_task):
            if task is not None and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in (self._listener_task, self._scheduler_task) if t is not None),
            return_exceptions=True,
        )
        await self.store.close()
        logger.info("Worker stopped")


def build_runtime(settings: Settings, *, clock: Callable[[], int] = now_ms) -> Runtime:
    """Select adapters from *settings* and assemble a :class:`Runtime`."""
    return Runtime(
        settings,
        store=factory.build_task_store(settings),
        storage=factory.build_storage(settings),
        notifier=factory.build_notifier(settings),
        engine=factory.build_engine(settings),
        queue=factory.build_queue(settings),
        clock=clock,
    )
