"""Task — the single persistent entity tracked by BucketGuard.

A :class:`Task` records one scan request for one file path and the progress of
that request through its lifecycle::

    PENDING ──claim──▶ SCANNING ──▶ FINISHED | FAILED
        ▲                  │
        └──stale/shutdown──┘

FINISHED and FAILED are terminal.  Every task store backend persists the
same set of fields; :meth:`Task.to_item` / :meth:`Task.from_item` translate
between the Python attribute names and the camelCase item layout used on the
wire (DynamoDB items, API responses, notification payloads).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

#: Sentinel stored in ``scan_start_ts`` / ``scan_end_ts`` until set.
UNSET_TS = -1


class ScanState(str, Enum):
    """Lifecycle state of a task."""

    PENDING = "PENDING"
    SCANNING = "SCANNING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"


class ScanResult(str, Enum):
    """Verdict recorded on a task."""

    PENDING = "PENDING"
    CLEAN = "CLEAN"
    INFECTED = "INFECTED"
    FAILED = "FAILED"


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def bytes_to_mb(size_bytes: int) -> float:
    return size_bytes / 1024 / 1024


def _to_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    return int(value)


def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, Decimal):
        return float(value)
    return float(value)


@dataclass(frozen=True)
class Task:
    """Immutable snapshot of a task row.

    Attributes:
        file_path: Unique key; the storage URI of the scan subject
            (e.g. ``"s3://bucket/some/file.csv"``).
        scan_state: Current lifecycle state.
        created_ts: Insertion time in epoch milliseconds.  Defines claim
            order: the oldest pending task is claimed first.
        scan_start_ts: Claim time in epoch milliseconds, ``-1`` until claimed.
        scan_end_ts: Terminal-transition time, ``-1`` until terminal.
        scan_result: Verdict; ``PENDING`` until a scan succeeds.
        viruses: Names of detected threats; empty unless ``INFECTED``.
        scan_attempts: Incremented on every terminal transition.
        size_mb: File size at ingestion time in megabytes.
        file_hash: Content fingerprint (strong ETag) at ingestion time.
        notify_channels: Extra notification destinations for this task.
    """

    file_path: str
    scan_state: ScanState = ScanState.PENDING
    created_ts: int = field(default_factory=now_ms)
    scan_start_ts: int = UNSET_TS
    scan_end_ts: int = UNSET_TS
    scan_result: ScanResult = ScanResult.PENDING
    viruses: tuple[str, ...] = ()
    scan_attempts: int = 0
    size_mb: float = 0.0
    file_hash: str = ""
    notify_channels: tuple[str, ...] = ()

    def evolve(self, **changes: Any) -> "Task":
        """Return a copy of this task with *changes* applied."""
        return replace(self, **changes)

    def is_stale(self, now: int, stale_after_ms: int) -> bool:
        """Return ``True`` when this SCANNING task has outlived *stale_after_ms*."""
        return self.scan_state is ScanState.SCANNING and now > self.scan_start_ts + stale_after_ms

    def to_item(self) -> dict[str, Any]:
        """Return the camelCase item representation of this task."""
        return {
            "filePath": self.file_path,
            "scanState": self.scan_state.value,
            "createdTs": self.created_ts,
            "scanStartTs": self.scan_start_ts,
            "scanEndTs": self.scan_end_ts,
            "scanResult": self.scan_result.value,
            "viruses": list(self.viruses),
            "scanAttempts": self.scan_attempts,
            "sizeMb": self.size_mb,
            "fileHash": self.file_hash,
            "notifyChannels": list(self.notify_channels),
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "Task":
        """Build a :class:`Task` from a camelCase item.

        Numeric values may arrive as :class:`decimal.Decimal` (DynamoDB) and
        optional list attributes may be missing on rows written by older
        versions; both are normalised here.
        """
        return cls(
            file_path=item["filePath"],
            scan_state=ScanState(item["scanState"]),
            created_ts=_to_int(item.get("createdTs")),
            scan_start_ts=_to_int(item.get("scanStartTs"), UNSET_TS),
            scan_end_ts=_to_int(item.get("scanEndTs"), UNSET_TS),
            scan_result=ScanResult(item.get("scanResult") or ScanResult.PENDING.value),
            viruses=tuple(item.get("viruses") or ()),
            scan_attempts=_to_int(item.get("scanAttempts")),
            size_mb=_to_float(item.get("sizeMb")),
            file_hash=item.get("fileHash") or "",
            notify_channels=tuple(item.get("notifyChannels") or ()),
        )


def new_pending_task(
    file_path: str,
    *,
    size_mb: float,
    file_hash: str,
    notify_channels: tuple[str, ...] | list[str] = (),
    created_ts: int | None = None,
) -> Task:
    """Return a freshly-ingested PENDING task for *file_path*."""
    return Task(
        file_path=file_path,
        scan_state=ScanState.PENDING,
        created_ts=created_ts if created_ts is not None else now_ms(),
        size_mb=size_mb,
        file_hash=file_hash,
        notify_channels=tuple(notify_channels),
    )
