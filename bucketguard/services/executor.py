"""ScanExecutor — run one scan under a wall-clock deadline.

The executor opens the file as a byte stream, hands it to the AV engine and
waits at most ``scan_timeout`` seconds for a verdict.  The deadline cancels
the engine call only; the stream is always closed afterwards.

Outcomes
--------
* ``clean`` / ``infected`` verdict → returned to the caller.
* Deadline exceeded → :class:`~bucketguard.core.errors.ScanTimeoutError`.
* ``indeterminate`` verdict → :class:`~bucketguard.core.errors.IndeterminateScanError`.
* Storage errors opening the stream propagate unchanged.

Every outcome increments ``bucketguard_scan_count_total``; successful scans
also feed the size and duration histograms.  Each scan runs inside an
OpenTelemetry span named ``bucketguard.scan``.
"""

from __future__ import annotations

import asyncio
import logging
import time

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from prometheus_client import Counter, Histogram

from bucketguard.core.av_engine import AVEngineAdapter, ScanVerdict
from bucketguard.core.errors import IndeterminateScanError, ScanTimeoutError
from bucketguard.core.storage import ByteStream, FileStorage
from bucketguard.models.task import Task

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(
    "bucketguard.executor",
    schema_url="https://opentelemetry.io/schemas/1.11.0",
)

# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------

#: Labels: ``status`` ("successful" | "failed") and ``result``
#: ("clean" | "infected" | "failed").
scan_count_total = Counter(
    "bucketguard_scan_count_total",
    "The number of scans attempted, both successful and failed",
    ["status", "result"],
)

tasks_size_mb = Histogram(
    "bucketguard_tasks_size_mb",
    "Sizes of scanned files in megabytes",
    buckets=(1, 10, 100, 1000, 5000, 10000),
)

scan_duration_seconds = Histogram(
    "bucketguard_scan_duration_seconds",
    "Durations of successful scans in seconds",
    buckets=(1, 5, 10, 30, 60, 120, 180, 300, 600, 900, 1800, 3600),
)


def _close_stream(stream: ByteStream, file_path: str) -> None:
    try:
        stream.close()
    except Exception as exc:
        logger.warning("Failed to close stream file=%s error=%r", file_path, exc)


class ScanExecutor:
    """Scans claimed tasks with an AV engine.

    Args:
        storage: Storage the file stream is opened from.
        engine: AV engine adapter.
        scan_timeout: Deadline in seconds for a single scan.
    """

    def __init__(self, storage: FileStorage, engine: AVEngineAdapter, scan_timeout: float) -> None:
        self._storage = storage
        self._engine = engine
        self._scan_timeout = scan_timeout

    async def execute(self, task: Task) -> ScanVerdict:
        """Scan the file of *task* and return a clean or infected verdict.

        Raises:
            ScanTimeoutError: when the engine does not answer in time.
            IndeterminateScanError: when the engine could not decide.
        """
        file_path = task.file_path
        start = time.monotonic()

        with tracer.start_as_current_span("bucketguard.scan", kind=trace.SpanKind.INTERNAL) as span:
            span.set_attribute("scan.file_path", file_path)
            span.set_attribute("scan.size_mb", task.size_mb)
            logger.info("Scan started file=%s size_mb=%.3f", file_path, task.size_mb)

            try:
                verdict = await self._scan(file_path)
            except Exception as exc:
                scan_count_total.labels(status="failed", result="failed").inc()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise

            elapsed = time.monotonic() - start
            result = "infected" if verdict.is_infected else "clean"
            scan_count_total.labels(status="successful", result=result).inc()
            tasks_size_mb.observe(task.size_mb)
            scan_duration_seconds.observe(elapsed)
            span.set_attribute("scan.result", result)
            span.set_attribute("scan.duration_ms", int(elapsed * 1000))

            logger.info(
                "Scan finished file=%s result=%s viruses=%d duration_s=%.2f",
                file_path,
                result,
                len(verdict.viruses),
                elapsed,
            )
            return verdict

    async def _scan(self, file_path: str) -> ScanVerdict:
        stream = await self._storage.open_stream(file_path)
        try:
            verdict = await asyncio.wait_for(
                self._engine.scan_stream(stream),
                timeout=self._scan_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ScanTimeoutError(
                f"scan of {file_path!r} exceeded {self._scan_timeout:g}s"
            ) from exc
        finally:
            _close_stream(stream, file_path)

        if verdict.status == "indeterminate":
            raise IndeterminateScanError(
                f"engine {verdict.engine} could not scan {file_path!r}: {verdict.detail}"
            )
        return verdict
