"""PollScheduler — the per-process orchestration loop.

Every tick the scheduler:

1. reads the PENDING and SCANNING tasks once;
2. if no scan is in flight and something is pending, flips to *busy* and
   starts a detached unit of work: claim → scan → finalize;
3. runs the stale-task reaper over the SCANNING tasks;
4. updates the pending-task gauges.

There is a single scan slot per process.  The idle → busy flip happens
synchronously before the first ``await`` of the unit, so two ticks of the
same loop can never both start a unit.  Exclusion *between* processes comes
only from the guarded claim write in the task store.

The wait between ticks is ``poll_interval`` while idle and ``busy_interval``
while busy, measured from the start of the previous tick.  A unit of work
that actually scanned a file wakes the loop as soon as it completes, so a
backlog is drained back to back without waiting out the longer interval.  A
unit that ends without a claim (race lost, file missing, store error)
shortens the wait back to ``poll_interval``.

Shutdown
--------
:meth:`PollScheduler.shutdown` stops the loop, waits for a claim write that
is still in flight, cancels the unit and returns its task to PENDING
(guarded by SCANNING, attempt count unchanged).  It does not wait for the
scan to finish.

Errors
------
:class:`~bucketguard.core.errors.FatalConfigurationError`, whether raised by
the tick or inside a unit of work, stops :meth:`PollScheduler.run` by
propagating out of it.  Every other error is logged and the loop carries on
with the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from prometheus_client import Counter, Gauge

from bucketguard.core.errors import FatalConfigurationError, RaceLostError
from bucketguard.core.task_store import TaskStore
from bucketguard.models.task import ScanState, Task
from bucketguard.services.claimer import TaskClaimer
from bucketguard.services.executor import ScanExecutor
from bucketguard.services.finalizer import Finalizer
from bucketguard.services.reaper import StaleTaskReaper

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------

db_poll_count_total = Counter(
    "bucketguard_db_poll_count_total",
    "The number of task store polls executed",
)

pending_tasks_count = Gauge(
    "bucketguard_pending_tasks_count",
    "The number of pending tasks",
)

pending_tasks_size_mb = Gauge(
    "bucketguard_pending_tasks_size_mb",
    "The total size of all pending tasks in megabytes",
)


class PollScheduler:
    """Drives claim → scan → finalize and stale-task recovery for one process.

    Args:
        store: Shared task store.
        claimer: Claims the oldest pending task.
        executor: Scans a claimed task.
        finalizer: Records the terminal state.
        reaper: Returns stale SCANNING tasks to PENDING.
        poll_interval: Seconds between ticks while idle.
        busy_interval: Seconds between ticks while a unit of work is in flight.
    """

    def __init__(
        self,
        store: TaskStore,
        claimer: TaskClaimer,
        executor: ScanExecutor,
        finalizer: Finalizer,
        reaper: StaleTaskReaper,
        *,
        poll_interval: float,
        busy_interval: float,
    ) -> None:
        self._store = store
        self._claimer = claimer
        self._executor = executor
        self._finalizer = finalizer
        self._reaper = reaper
        self._poll_interval = poll_interval
        self._busy_interval = busy_interval

        self._busy = False
        self._current_task: Task | None = None
        self._unit: asyncio.Task | None = None
        self._claim: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._wakeup = asyncio.Event()
        self._unclaimed = False
        self._stopping = False
        self._fatal: FatalConfigurationError | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def current_task(self) -> Task | None:
        """Task being scanned by this process, if any."""
        return self._current_task

    @property
    def stopping(self) -> bool:
        return self._stopping

    def current_interval(self) -> float:
        return self._busy_interval if self._busy else self._poll_interval

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Tick until :meth:`shutdown` is called.

        Raises:
            FatalConfigurationError: when a configured table or queue is
                missing.
        """
        logger.info(
            "Scheduler started poll_interval=%.1fs busy_interval=%.1fs",
            self._poll_interval,
            self._busy_interval,
        )
        loop = asyncio.get_running_loop()
        while not self._stopping:
            started = loop.time()
            interval = await self.tick()
            self._raise_if_fatal()
            await self._sleep(started, interval)
            self._raise_if_fatal()
        logger.info("Scheduler stopped")

    async def tick(self) -> float:
        """Run one poll cycle and return the seconds to wait before the next."""
        if self._stopping:
            return self.current_interval()

        db_poll_count_total.inc()
        try:
            tasks = await self._store.list_by_states(ScanState.PENDING, ScanState.SCANNING)
        except FatalConfigurationError as exc:
            logger.critical("Task store is misconfigured: %s", exc)
            raise
        except Exception as exc:
            logger.error("Task store poll failed store=%s error=%r", self._store.backend_name, exc)
            return self.current_interval()

        pending = [t for t in tasks if t.scan_state is ScanState.PENDING]
        scanning = [t for t in tasks if t.scan_state is ScanState.SCANNING]

        if self._busy:
            logger.debug("Scan in progress, next poll in %.1fs", self._busy_interval)
        elif pending:
            self._start_unit(pending)

        try:
            await self._reaper.reap(scanning)
        except FatalConfigurationError as exc:
            logger.critical("Task store is misconfigured: %s", exc)
            raise
        except Exception as exc:
            logger.error("Stale task check failed error=%r", exc)

        pending_tasks_count.set(len(pending))
        pending_tasks_size_mb.set(sum(t.size_mb for t in pending))
        return self.current_interval()

    async def wait_idle(self) -> None:
        """Return once no unit of work is in flight."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Stop ticking and hand the in-flight task back to PENDING."""
        if self._stopping:
            return
        logger.warning("Scheduler shutdown requested")
        self._stopping = True
        self._wakeup.set()

        unit = self._unit
        claim = self._claim
        task = self._current_task
        if claim is not None and not claim.done():
            # The claim write may already be committed by the store's thread
            # or driver; let it resolve so a won claim can be reverted.
            logger.info("Waiting for in-flight claim to resolve")
            await asyncio.gather(claim, return_exceptions=True)
        if task is None and claim is not None and claim.done() and not claim.cancelled():
            if claim.exception() is None:
                task = claim.result()

        if unit is not None and not unit.done():
            unit.cancel()
            await asyncio.gather(unit, return_exceptions=True)
        # A unit cancelled before its first step never reaches its finally.
        self._busy = False
        self._current_task = None
        self._unit = None
        self._claim = None
        self._idle.set()

        if task is None:
            return
        logger.info("Returning in-flight task to PENDING file=%s", task.file_path)
        try:
            await self._store.set_pending(task.file_path, expected=ScanState.SCANNING)
        except RaceLostError:
            logger.info("In-flight task already left SCANNING file=%s", task.file_path)
        except Exception as exc:
            logger.error("Failed to return task to PENDING file=%s error=%r", task.file_path, exc)
        else:
            logger.info("Task returned to PENDING file=%s", task.file_path)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _start_unit(self, pending: Sequence[Task]) -> None:
        # Must stay free of awaits: this is the in-process claim guard.
        self._busy = True
        self._idle.clear()
        self._unit = asyncio.create_task(self._run_unit(list(pending)), name="bucketguard-scan")

    async def _run_unit(self, pending: list[Task]) -> None:
        scanned = False
        try:
            self._claim = asyncio.create_task(self._claimer.claim(pending), name="bucketguard-claim")
            # Shielded so that shutdown can wait for the write instead of abandoning it.
            task = await asyncio.shield(self._claim)
            if task is None:
                return
            self._current_task = task
            try:
                verdict = await self._executor.execute(task)
            except Exception as exc:
                logger.warning("Scan failed file=%s error=%r", task.file_path, exc)
                await self._finalizer.fail(task, exc)
            else:
                await self._finalizer.succeed(task, verdict)
            scanned = True
        except FatalConfigurationError as exc:
            logger.critical("Task store is misconfigured: %s", exc)
            self._fatal = exc
            self._wakeup.set()
        except Exception:
            logger.exception("Unit of work failed")
        finally:
            self._busy = False
            self._current_task = None
            self._unit = None
            self._claim = None
            self._idle.set()
            if scanned:
                self._wakeup.set()
            elif self._fatal is None and not self._stopping:
                self._unclaimed = True
                self._wakeup.set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _sleep(self, started: float, interval: float) -> None:
        """Wait until *interval* seconds after *started*.

        A scanned unit, a fatal error or shutdown ends the wait at once.  A
        unit that claimed nothing only shortens it to ``poll_interval``.
        """
        loop = asyncio.get_running_loop()
        deadline = started + interval
        while not self._stopping and self._fatal is None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                break
            self._wakeup.clear()
            if not self._unclaimed:
                break
            self._unclaimed = False
            deadline = min(deadline, started + self._poll_interval)
        self._wakeup.clear()
        self._unclaimed = False

    def _raise_if_fatal(self) -> None:
        if self._fatal is not None:
            raise self._fatal
