"""HTTP webhook notification provider.

Channels are ``http://`` or ``https://`` URLs.  Payloads are POSTed as JSON;
any non-2xx response raises :class:`httpx.HTTPStatusError`, which
:class:`~bucketguard.core.notifier.NotifierHub` logs and counts.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from bucketguard.core.notifier import (
    NotificationProvider,
    build_error_payload,
    build_result_payload,
)

logger = logging.getLogger(__name__)


class WebhookNotifier(NotificationProvider):
    """POSTs notification payloads to webhook URLs.

    Args:
        default_url: URL that receives every notification, or ``None``.
        timeout: Per-request timeout in seconds.
        http_client: Optional shared :class:`httpx.AsyncClient`.  When
            ``None`` a short-lived client is created per request.
    """

    name = "webhook"

    def __init__(
        self,
        default_url: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._default_url = default_url
        self._timeout = timeout
        self._http_client = http_client

    def handles(self, channel: str) -> bool:
        return channel.startswith(("http://", "https://"))

    def default_channel(self) -> str | None:
        return self._default_url

    async def notify(
        self,
        file_path: str,
        result: str,
        viruses: Iterable[str] | None,
        ts: int,
        channel: str,
    ) -> None:
        await self._post(channel, build_result_payload(file_path, result, viruses, ts))

    async def notify_error(
        self,
        file_path: str,
        code: str,
        message: str,
        ts: int,
        channel: str,
    ) -> None:
        await self._post(channel, build_error_payload(file_path, code, message, ts))

    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        if self._http_client is not None:
            response = await self._http_client.post(url, json=payload, timeout=self._timeout)
            response.raise_for_status()
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        logger.debug("Webhook delivered url=%s status=%d", url, response.status_code)
