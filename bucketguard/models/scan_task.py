"""ScanTaskRecord ORM model.

Row layout of the ``scan_task`` table used by
:class:`~bucketguard.core.adapters.sql_store.SQLTaskStore`.  One row per file
path; the claim protocol relies on ``UPDATE ... WHERE scan_state = :expected``
being atomic for a single row, which every supported database guarantees.
"""

from sqlalchemy import JSON, BigInteger, Float, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from bucketguard.db.session import Base
from bucketguard.models.task import UNSET_TS, ScanResult, ScanState, Task


class ScanTaskRecord(Base):
    """Durable task row keyed by ``file_path``."""

    __tablename__ = "scan_task"
    __table_args__ = (Index("ix_scan_task_state_created", "scan_state", "created_ts"),)

    file_path: Mapped[str] = mapped_column(Text, primary_key=True)
    scan_state: Mapped[str] = mapped_column(Text, nullable=False)
    created_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    scan_start_ts: Mapped[int] = mapped_column(BigInteger, nullable=False, default=UNSET_TS)
    scan_end_ts: Mapped[int] = mapped_column(BigInteger, nullable=False, default=UNSET_TS)
    scan_result: Mapped[str] = mapped_column(
        Text, nullable=False, default=ScanResult.PENDING.value
    )
    viruses: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    scan_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    size_mb: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    file_hash: Mapped[str] = mapped_column(Text, nullable=False, default="")
    notify_channels: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    def to_task(self) -> Task:
        return Task(
            file_path=self.file_path,
            scan_state=ScanState(self.scan_state),
            created_ts=self.created_ts,
            scan_start_ts=self.scan_start_ts,
            scan_end_ts=self.scan_end_ts,
            scan_result=ScanResult(self.scan_result),
            viruses=tuple(self.viruses or ()),
            scan_attempts=self.scan_attempts,
            size_mb=self.size_mb,
            file_hash=self.file_hash,
            notify_channels=tuple(self.notify_channels or ()),
        )


def record_values(task: Task) -> dict:
    """Column values for inserting *task*."""
    return {
        "file_path": task.file_path,
        "scan_state": task.scan_state.value,
        "created_ts": task.created_ts,
        "scan_start_ts": task.scan_start_ts,
        "scan_end_ts": task.scan_end_ts,
        "scan_result": task.scan_result.value,
        "viruses": list(task.viruses),
        "scan_attempts": task.scan_attempts,
        "size_mb": task.size_mb,
        "file_hash": task.file_hash,
        "notify_channels": list(task.notify_channels),
    }
