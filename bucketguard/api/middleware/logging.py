"""Structured JSON request logging middleware for the BucketGuard API.

:class:`RequestLoggingMiddleware` records every HTTP request as a structured
JSON log entry at ``INFO`` level, enriched with:

* A **correlation ID** — propagated from the incoming ``X-Correlation-ID``
  (or ``X-Request-ID``) header, or generated as a UUID v4 when absent.
* The **worker's current task** — the file path this process is scanning
  when the request completes, or ``null`` when idle.  Useful when reading
  API logs next to scheduler logs.
* Request metadata: HTTP method, URL path, response status code, and wall-clock
  duration in milliseconds.

The correlation ID is also stored on ``request.state.correlation_id`` and
echoed back to the client in the ``X-Correlation-ID`` response header.

Log entry format
----------------
::

    {
      "event": "http_request",
      "correlation_id": "550e8400-e29b-41d4-a716-446655440000",
      "current_task": "s3://bucket/some/file.csv",
      "method": "POST",
      "path": "/api/tasks",
      "status_code": 200,
      "duration_ms": 42.7
    }

Probe paths (``/healthz``, ``/metrics``) are logged at ``DEBUG`` so that
orchestrator liveness checks do not flood the logs.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Headers checked (in priority order) for an incoming correlation ID.
_CORRELATION_HEADERS: tuple[str, ...] = ("x-correlation-id", "x-request-id")

_PROBE_PATHS = frozenset({"/healthz", "/metrics"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Structured JSON per-request logging middleware.

    The correlation ID is:

    * Read from ``X-Correlation-ID`` or ``X-Request-ID`` request headers
      (first match wins).
    * Generated as a UUID v4 when no recognised header is present.
    * Written to ``request.state.correlation_id`` for downstream use.
    * Echoed in the ``X-Correlation-ID`` response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = self._extract_correlation_id(request)
        request.state.correlation_id = correlation_id

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 2)

        log_entry = {
            "event": "http_request",
            "correlation_id": correlation_id,
            "current_task": self._current_task(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
        level = logging.DEBUG if request.url.path in _PROBE_PATHS else logging.INFO
        logger.log(level, json.dumps(log_entry))

        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @staticmethod
    def _extract_correlation_id(request: Request) -> str:
        """Return a correlation ID for *request*.

        Checks ``X-Correlation-ID`` then ``X-Request-ID`` headers.  If neither
        is present, a fresh UUID v4 string is generated.
        """
        for header in _CORRELATION_HEADERS:
            value = request.headers.get(header, "").strip()
            if value:
                return value
        return str(uuid.uuid4())

    @staticmethod
    def _current_task(request: Request) -> str | None:
        runtime = getattr(request.app.state, "runtime", None)
        if runtime is None:
            return None
        task = runtime.scheduler.current_task
        return task.file_path if task is not None else None
