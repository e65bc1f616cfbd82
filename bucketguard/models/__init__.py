"""Model registry - import the ORM model so Alembic autogenerate can detect it."""

from bucketguard.models.scan_task import ScanTaskRecord
from bucketguard.models.task import ScanResult, ScanState, Task

__all__ = [
    "ScanResult",
    "ScanState",
    "ScanTaskRecord",
    "Task",
]
