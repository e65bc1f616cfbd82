"""Abstract object-storage interface.

BucketGuard never reads files from local disk.  The scan subject is
identified by a storage URI (``s3://bucket/key``) and every access goes
through a :class:`FileStorage` implementation:

* :meth:`FileStorage.get_metadata` checks that the file exists and returns
  its size and content fingerprint.
* :meth:`FileStorage.open_stream` returns a readable byte stream that the AV
  engine consumes.
* :meth:`FileStorage.tag` records the scan verdict on the object itself.

Concrete implementation:
:class:`~bucketguard.core.adapters.s3_storage.S3Storage`.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class FileMetadata:
    """Metadata of an existing object.

    Attributes:
        size_bytes: Object size in bytes.
        etag: Strong entity tag with surrounding quotes removed.
    """

    size_bytes: int
    etag: str


class ByteStream(Protocol):
    """Minimal readable stream accepted by the AV engine."""

    def read(self, size: int = -1) -> bytes: ...

    def close(self) -> None: ...


class FileStorage(abc.ABC):
    """Access to the object store that holds the files to scan."""

    @abc.abstractmethod
    async def get_metadata(self, file_path: str) -> FileMetadata | None:
        """Return metadata for *file_path*, or ``None`` when it does not exist.

        Only a definite "not found" answer yields ``None``; permission and
        connectivity errors propagate so the caller treats them as transient.
        """

    @abc.abstractmethod
    async def open_stream(self, file_path: str) -> ByteStream:
        """Open *file_path* for reading.  The caller closes the stream."""

    @abc.abstractmethod
    async def tag(self, file_path: str, result: str, ts: int) -> None:
        """Attach the scan *result* and its timestamp *ts* to *file_path*."""
