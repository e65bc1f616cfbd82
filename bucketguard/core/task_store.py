"""Abstract task store interface.

The task store is the only shared mutable resource between worker processes.
Every mutation is a single-row write, either unconditional or guarded by the
row's current ``scan_state``.  The guarded write is the *only* cross-process
mutual-exclusion primitive BucketGuard relies on: there is no lock service and
no leader election.

Concrete implementations:

* :class:`~bucketguard.core.adapters.dynamodb_store.DynamoDBTaskStore`
* :class:`~bucketguard.core.adapters.sql_store.SQLTaskStore`
* :class:`~bucketguard.core.adapters.memory_store.MemoryTaskStore`

Implementations raise :class:`~bucketguard.core.errors.RaceLostError` when a
guard fails, :class:`~bucketguard.core.errors.TaskNotFoundError` when an
unconditional update targets a missing row, and
:class:`~bucketguard.core.errors.FatalConfigurationError` when the backing
table does not exist.  Any other exception is a transient failure.
"""

from __future__ import annotations

import abc
from typing import Any, Iterable

from bucketguard.models.task import ScanResult, ScanState, Task

#: Task attributes that :meth:`TaskStore.transition` may set alongside the state.
MUTABLE_FIELDS = frozenset({"scan_start_ts", "scan_end_ts", "scan_result", "viruses"})


class TaskStore(abc.ABC):
    """Durable table of :class:`~bucketguard.models.task.Task` rows keyed by file path."""

    #: Short backend identifier used in log lines.
    backend_name: str = "unknown"

    @abc.abstractmethod
    async def list_by_states(self, *states: ScanState) -> list[Task]:
        """Return every task whose state is one of *states*.

        The result is sorted by ascending ``created_ts``; rows with equal
        timestamps keep the order in which the backend returned them.
        """

    @abc.abstractmethod
    async def get(self, file_path: str) -> Task | None:
        """Return the task stored under *file_path*, or ``None``."""

    @abc.abstractmethod
    async def create(self, task: Task) -> Task:
        """Insert *task*, overwriting any existing row with the same key."""

    @abc.abstractmethod
    async def _write(
        self,
        file_path: str,
        new_state: ScanState,
        expected: ScanState | None,
        increment_attempts: bool,
        fields: dict[str, Any],
    ) -> Task:
        """Backend hook for :meth:`transition`; *fields* are already validated."""

    async def transition(
        self,
        file_path: str,
        new_state: ScanState,
        *,
        expected: ScanState | None = None,
        increment_attempts: bool = False,
        **fields: Any,
    ) -> Task:
        """Move the task at *file_path* to *new_state* in a single write.

        Args:
            file_path: Key of the task to update.
            new_state: State to write.
            expected: When given, the write only happens if the row's current
                state equals *expected*; otherwise
                :class:`~bucketguard.core.errors.RaceLostError` is raised and
                the row is left untouched.  When ``None`` the write is
                unconditional (but never creates a row).
            increment_attempts: Add one to ``scan_attempts`` in the same write.
            **fields: Extra attributes to set, restricted to
                :data:`MUTABLE_FIELDS`.

        Returns:
            The row as it is after the write.
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot set task attributes {sorted(unknown)} in a transition")
        if "viruses" in fields:
            fields["viruses"] = tuple(fields["viruses"] or ())
        return await self._write(file_path, new_state, expected, increment_attempts, fields)

    # ------------------------------------------------------------------
    # Lifecycle operations used by the orchestrator
    # ------------------------------------------------------------------

    async def set_scanning(self, file_path: str, ts: int) -> Task:
        """Claim the task: PENDING → SCANNING, guarded by the PENDING state."""
        return await self.transition(
            file_path,
            ScanState.SCANNING,
            expected=ScanState.PENDING,
            scan_start_ts=ts,
        )

    async def set_finished(
        self,
        file_path: str,
        result: ScanResult,
        viruses: Iterable[str] | None,
        ts: int,
    ) -> Task:
        """Record a successful scan verdict and count the attempt."""
        return await self.transition(
            file_path,
            ScanState.FINISHED,
            increment_attempts=True,
            scan_result=result,
            viruses=tuple(viruses or ()),
            scan_end_ts=ts,
        )

    async def set_failed(self, file_path: str, ts: int) -> Task:
        """Record a failed scan and count the attempt.

        ``scan_result`` and ``viruses`` keep whatever values they had.
        """
        return await self.transition(
            file_path,
            ScanState.FAILED,
            increment_attempts=True,
            scan_end_ts=ts,
        )

    async def set_pending(
        self,
        file_path: str,
        *,
        expected: ScanState | None = ScanState.SCANNING,
    ) -> Task:
        """Return a task to PENDING without counting an attempt."""
        return await self.transition(file_path, ScanState.PENDING, expected=expected)

    async def close(self) -> None:
        """Release backend resources.  The default implementation does nothing."""
