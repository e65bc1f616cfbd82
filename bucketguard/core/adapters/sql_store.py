"""SQL task store (PostgreSQL or SQLite) on SQLAlchemy's async engine.

:class:`SQLTaskStore` persists tasks in the ``scan_task`` table
(:class:`~bucketguard.models.scan_task.ScanTaskRecord`).

**Claim protocol:** a guarded transition is a single statement::

    UPDATE scan_task SET scan_state = 'SCANNING', scan_start_ts = :ts
     WHERE file_path = :path AND scan_state = 'PENDING'

The database applies the predicate and the update atomically for the row.
When several workers race, only one statement reports ``rowcount == 1``; the
others see ``0`` and raise :class:`~bucketguard.core.errors.RaceLostError`.
No explicit row lock or multi-row transaction is involved.

**Idempotent ingestion:** :meth:`SQLTaskStore.create` is an
``INSERT ... ON CONFLICT (file_path) DO UPDATE`` so redelivered queue messages
overwrite the existing row instead of failing on the primary key.

The schema is managed by Alembic (``migrations/versions``);
:meth:`SQLTaskStore.create_schema` exists for development and tests.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any, AsyncIterator

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncEngine

from bucketguard.core.errors import FatalConfigurationError, RaceLostError, TaskNotFoundError
from bucketguard.core.task_store import TaskStore
from bucketguard.db.session import Base, create_engine, create_session_factory
from bucketguard.models.scan_task import ScanTaskRecord, record_values
from bucketguard.models.task import ScanState, Task

logger = logging.getLogger(__name__)

# Driver messages that mean the table itself is missing.
_MISSING_TABLE_MARKERS = ("no such table", "does not exist", "undefinedtable")


def _column_value(name: str, value: Any) -> Any:
    if name == "scan_result":
        return value.value
    if name == "viruses":
        return list(value)
    return value


class SQLTaskStore(TaskStore):
    """:class:`~bucketguard.core.task_store.TaskStore` backed by a SQL table.

    Args:
        engine: Async SQLAlchemy engine.  The store owns it and disposes of it
            in :meth:`close`.
    """

    backend_name = "sql"

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = create_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> "SQLTaskStore":
        return cls(create_engine(database_url, **engine_kwargs))

    async def create_schema(self) -> None:
        """Create the ``scan_task`` table if it does not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    # ------------------------------------------------------------------
    # TaskStore interface
    # ------------------------------------------------------------------

    async def list_by_states(self, *states: ScanState) -> list[Task]:
        stmt = (
            select(ScanTaskRecord)
            .where(ScanTaskRecord.scan_state.in_([s.value for s in states]))
            .order_by(ScanTaskRecord.created_ts)
        )
        async with self._translate_errors(), self._session_factory() as session:
            result = await session.execute(stmt)
            return [record.to_task() for record in result.scalars()]

    async def get(self, file_path: str) -> Task | None:
        async with self._translate_errors(), self._session_factory() as session:
            record = await session.get(ScanTaskRecord, file_path)
            return record.to_task() if record is not None else None

    async def create(self, task: Task) -> Task:
        values = record_values(task)
        insert = postgresql.insert if self._engine.dialect.name == "postgresql" else sqlite.insert
        stmt = insert(ScanTaskRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ScanTaskRecord.file_path],
            set_={k: v for k, v in values.items() if k != "file_path"},
        )
        async with self._translate_errors(), self._session_factory() as session:
            async with session.begin():
                await session.execute(stmt)
        logger.debug("SQLTaskStore: upserted file=%s state=%s", task.file_path, task.scan_state.value)
        return task

    async def _write(
        self,
        file_path: str,
        new_state: ScanState,
        expected: ScanState | None,
        increment_attempts: bool,
        fields: dict[str, Any],
    ) -> Task:
        values: dict[str, Any] = {"scan_state": new_state.value}
        values.update({name: _column_value(name, value) for name, value in fields.items()})
        if increment_attempts:
            values["scan_attempts"] = ScanTaskRecord.scan_attempts + 1

        stmt = update(ScanTaskRecord).where(ScanTaskRecord.file_path == file_path)
        if expected is not None:
            stmt = stmt.where(ScanTaskRecord.scan_state == expected.value)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        async with self._translate_errors(), self._session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    if expected is not None:
                        raise RaceLostError(file_path, expected.value)
                    raise TaskNotFoundError(file_path)
                row = await session.execute(
                    select(ScanTaskRecord)
                    .where(ScanTaskRecord.file_path == file_path)
                    .execution_options(populate_existing=True)
                )
                return row.scalar_one().to_task()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _translate_errors(self) -> AsyncIterator[None]:
        """Turn "table does not exist" driver errors into a fatal error."""
        try:
            yield
        except (OperationalError, ProgrammingError) as exc:
            message = str(exc).lower()
            if any(marker in message for marker in _MISSING_TABLE_MARKERS):
                raise FatalConfigurationError(
                    f"task table {ScanTaskRecord.__tablename__!r} does not exist"
                ) from exc
            raise
