"""Amazon S3 storage adapter.

:class:`S3Storage` implements :class:`~bucketguard.core.storage.FileStorage`
for ``s3://bucket/key`` URIs using boto3.

**Metadata:** ``HeadObject``.  A 404 (``NoSuchKey`` / ``NotFound``) means the
object does not exist and yields ``None``; any other ``ClientError``
(403, throttling, ...) propagates.

**Streaming:** ``GetObject`` returns a botocore ``StreamingBody`` which is
handed to the AV engine as-is.  The engine reads it in chunks on a worker
thread, so the object is never fully loaded into memory.

**Tagging:** S3 replaces the whole tag set on ``PutObjectTagging``.  The
adapter reads the existing tags, drops its own two keys and writes them back
together with fresh values, preserving tags written by other systems::

    <PREFIX>_RESULT = CLEAN | INFECTED | FAILED
    <PREFIX>_TS     = epoch milliseconds

**Async compatibility:** boto3 is synchronous; every call runs in
:func:`asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.exceptions import ClientError

from bucketguard.core.storage import ByteStream, FileMetadata, FileStorage

logger = logging.getLogger(__name__)

_SCHEME = "s3://"
_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


def split_s3_uri(file_path: str) -> tuple[str, str]:
    """Split ``s3://bucket/some/key`` into ``("bucket", "some/key")``.

    Raises:
        ValueError: When *file_path* is not an ``s3://`` URI with a key.
    """
    if not file_path.startswith(_SCHEME):
        raise ValueError(f"not an S3 URI: {file_path!r}")
    bucket, _, key = file_path[len(_SCHEME):].partition("/")
    if not bucket or not key:
        raise ValueError(f"S3 URI must name a bucket and a key: {file_path!r}")
    return bucket, key


class S3Storage(FileStorage):
    """:class:`~bucketguard.core.storage.FileStorage` backed by Amazon S3.

    Args:
        region_name: AWS region for the S3 client.  ``None`` uses the boto3
            default resolution chain.
        tag_prefix: Prefix of the two result tags written by :meth:`tag`.
        client: Pre-built boto3 S3 client (tests pass a mock).
    """

    def __init__(
        self,
        region_name: str | None = None,
        tag_prefix: str = "BUCKETGUARD",
        client: Any | None = None,
    ) -> None:
        self._region_name = region_name
        self._result_key = f"{tag_prefix}_RESULT"
        self._ts_key = f"{tag_prefix}_TS"
        self._client = client if client is not None else self._build_client()

    def _build_client(self) -> Any:
        return boto3.client("s3", region_name=self._region_name)

    async def get_metadata(self, file_path: str) -> FileMetadata | None:
        try:
            bucket, key = split_s3_uri(file_path)
        except ValueError:
            logger.warning("S3 metadata requested for malformed path=%s", file_path)
            return None
        logger.debug("S3 head_object bucket=%s key=%s", bucket, key)
        try:
            response = await asyncio.to_thread(self._client.head_object, Bucket=bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return None
            raise
        return FileMetadata(
            size_bytes=int(response.get("ContentLength", 0)),
            etag=str(response.get("ETag", "")).strip('"'),
        )

    async def open_stream(self, file_path: str) -> ByteStream:
        bucket, key = split_s3_uri(file_path)
        logger.debug("S3 get_object bucket=%s key=%s", bucket, key)
        response = await asyncio.to_thread(self._client.get_object, Bucket=bucket, Key=key)
        return response["Body"]

    async def tag(self, file_path: str, result: str, ts: int) -> None:
        await asyncio.to_thread(self._sync_tag, file_path, result, ts)
        logger.debug("S3 tagged file=%s result=%s ts=%d", file_path, result, ts)

    def _sync_tag(self, file_path: str, result: str, ts: int) -> None:
        """Synchronous: read-modify-write the object's tag set."""
        bucket, key = split_s3_uri(file_path)
        existing = self._client.get_object_tagging(Bucket=bucket, Key=key).get("TagSet", [])
        tags = [t for t in existing if t["Key"] not in (self._result_key, self._ts_key)]
        tags.append({"Key": self._result_key, "Value": str(result)})
        tags.append({"Key": self._ts_key, "Value": str(ts)})
        self._client.put_object_tagging(Bucket=bucket, Key=key, Tagging={"TagSet": tags})
