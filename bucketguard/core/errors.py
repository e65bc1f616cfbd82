"""Error taxonomy shared by the BucketGuard orchestrator and its adapters.

Adapters translate backend-specific failures (botocore ``ClientError`` codes,
SQLAlchemy exceptions, clamd socket errors) into the classes below so that the
orchestrator can decide how to react without knowing which backend is
configured:

* :class:`FileNotInStorageError` — the scan subject vanished.  Terminal for the
  ingestion or claim that observed it; an error notification is sent and the
  work is not retried.
* :class:`RaceLostError` — a guarded state transition lost to another worker.
  Expected during normal operation and never surfaced as a failure.
* :class:`ScanTimeoutError` / :class:`IndeterminateScanError` — scan outcomes
  routed to the finalizer's failure path.
* :class:`FatalConfigurationError` — a referenced table or queue does not
  exist.  The process stops.

Anything else raised by a collaborator is treated as a transient
infrastructure error: logged, the current tick aborted, the loop continues.
"""

from __future__ import annotations

#: Error code and message sent to notification channels when the scan
#: subject cannot be found in storage.
FILE_NOT_EXIST_CODE = "FILE_NOT_EXIST"
FILE_NOT_EXIST_MESSAGE = "file does not exist in specified location"


class BucketGuardError(Exception):
    """Base class for all BucketGuard errors."""


class FileNotInStorageError(BucketGuardError):
    """Raised when the file referenced by a task is absent from storage."""

    code = FILE_NOT_EXIST_CODE

    def __init__(self, file_path: str) -> None:
        super().__init__(f"{FILE_NOT_EXIST_MESSAGE}: {file_path}")
        self.file_path = file_path


class RaceLostError(BucketGuardError):
    """Raised when a guarded transition finds the row in an unexpected state.

    Attributes:
        file_path: Key of the task whose transition was rejected.
        expected_state: The state the caller required the row to be in.
    """

    def __init__(self, file_path: str, expected_state: str) -> None:
        super().__init__(
            f"task {file_path!r} is no longer {expected_state}; another worker got there first"
        )
        self.file_path = file_path
        self.expected_state = expected_state


class TaskNotFoundError(BucketGuardError):
    """Raised when an update targets a task row that does not exist."""

    def __init__(self, file_path: str) -> None:
        super().__init__(f"no task row for {file_path!r}")
        self.file_path = file_path


class ScanError(BucketGuardError):
    """Base class for scan outcomes that must finalize the task as FAILED."""


class ScanTimeoutError(ScanError):
    """Raised when the scan engine does not answer within the deadline."""


class IndeterminateScanError(ScanError):
    """Raised when the scan engine could not decide whether a file is infected."""


class EngineUnavailableError(BucketGuardError):
    """Raised when the scan engine never becomes healthy during startup."""


class FatalConfigurationError(BucketGuardError):
    """Raised when a configured table or queue does not exist.

    The scheduler stops and the process exits with a non-zero status.
    """
