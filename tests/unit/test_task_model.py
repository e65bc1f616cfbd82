"""Unit tests for bucketguard/models/task.py.

Coverage targets:
* ``Task.to_item`` / ``Task.from_item`` camelCase layout, including
  DynamoDB ``Decimal`` numbers and items missing optional list attributes.
* ``Task.is_stale`` only for SCANNING tasks past the threshold.
* ``new_pending_task`` defaults.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from bucketguard.models.task import (
    UNSET_TS,
    ScanResult,
    ScanState,
    Task,
    bytes_to_mb,
    new_pending_task,
)


def _make_task(**overrides) -> Task:
    defaults = dict(
        file_path="s3://bucket/a.csv",
        scan_state=ScanState.SCANNING,
        created_ts=1_000,
        scan_start_ts=2_000,
        size_mb=1.5,
        file_hash="abc",
        notify_channels=("test://x",),
    )
    defaults.update(overrides)
    return Task(**defaults)


class TestItemLayout:
    def test_to_item_uses_camel_case_keys(self) -> None:
        item = _make_task(viruses=("Eicar",)).to_item()

        assert item == {
            "filePath": "s3://bucket/a.csv",
            "scanState": "SCANNING",
            "createdTs": 1_000,
            "scanStartTs": 2_000,
            "scanEndTs": UNSET_TS,
            "scanResult": "PENDING",
            "viruses": ["Eicar"],
            "scanAttempts": 0,
            "sizeMb": 1.5,
            "fileHash": "abc",
            "notifyChannels": ["test://x"],
        }

    def test_from_item_round_trips(self) -> None:
        task = _make_task(scan_result=ScanResult.INFECTED, viruses=("A", "B"), scan_attempts=2)
        assert Task.from_item(task.to_item()) == task

    def test_from_item_accepts_decimals(self) -> None:
        item = {
            "filePath": "s3://bucket/a.csv",
            "scanState": "PENDING",
            "createdTs": Decimal("1700000000000"),
            "scanStartTs": Decimal("-1"),
            "scanEndTs": Decimal("-1"),
            "scanResult": "PENDING",
            "scanAttempts": Decimal("3"),
            "sizeMb": Decimal("0.25"),
            "fileHash": "etag",
        }

        task = Task.from_item(item)

        assert task.created_ts == 1_700_000_000_000
        assert task.scan_attempts == 3
        assert task.size_mb == 0.25
        assert isinstance(task.size_mb, float)

    def test_from_item_defaults_missing_optional_attributes(self) -> None:
        task = Task.from_item({"filePath": "s3://b/k", "scanState": "PENDING"})

        assert task.viruses == ()
        assert task.notify_channels == ()
        assert task.scan_start_ts == UNSET_TS
        assert task.scan_result is ScanResult.PENDING


class TestStaleness:
    def test_scanning_task_past_threshold_is_stale(self) -> None:
        assert _make_task(scan_start_ts=0).is_stale(now=3_601_000, stale_after_ms=3_600_000)

    def test_scanning_task_within_threshold_is_not_stale(self) -> None:
        assert not _make_task(scan_start_ts=0).is_stale(now=3_600_000, stale_after_ms=3_600_000)

    @pytest.mark.parametrize("state", [ScanState.PENDING, ScanState.FINISHED, ScanState.FAILED])
    def test_non_scanning_task_is_never_stale(self, state: ScanState) -> None:
        assert not _make_task(scan_state=state, scan_start_ts=0).is_stale(10**12, 1)


def test_new_pending_task_defaults() -> None:
    task = new_pending_task("s3://b/k", size_mb=2.0, file_hash="e", notify_channels=["c"], created_ts=5)

    assert task.scan_state is ScanState.PENDING
    assert task.scan_result is ScanResult.PENDING
    assert task.scan_start_ts == UNSET_TS
    assert task.scan_end_ts == UNSET_TS
    assert task.scan_attempts == 0
    assert task.viruses == ()
    assert task.notify_channels == ("c",)
    assert task.created_ts == 5


def test_bytes_to_mb() -> None:
    assert bytes_to_mb(1024 * 1024) == 1.0
