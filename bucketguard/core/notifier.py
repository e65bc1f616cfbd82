"""Notification providers and the hub that fans out to them.

A *channel* is an opaque destination string (an SNS topic ARN, a webhook
URL, ...).  Each :class:`NotificationProvider` recognises the channels it can
deliver to via :meth:`~NotificationProvider.handles` and may contribute a
default channel that receives every notification.

:class:`NotifierHub` computes the channel set of a task (the task's own
channels followed by every provider's default, order preserved, duplicates
removed) and delivers to each channel through the first provider that
handles it.

Delivery is **best-effort**.  A failure on one channel is logged, counted in
``bucketguard_notification_errors_total`` and does not prevent delivery to
the remaining channels; nothing is raised to the caller.

Payloads
--------
Result::

    {"filePath": "s3://bucket/a.csv", "scanResult": "CLEAN", "viruses": [], "timestamp": 1700000000000}

Error::

    {"filePath": "s3://bucket/a.csv", "error": {"code": "FILE_NOT_EXIST", "message": "..."}, "timestamp": 1700000000000}
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Iterable, Sequence

from prometheus_client import Counter

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------

#: Incremented for every failed delivery to a single channel.
notification_errors_total = Counter(
    "bucketguard_notification_errors_total",
    "Total number of failed notification deliveries",
    ["provider"],
)


def build_result_payload(
    file_path: str,
    result: str,
    viruses: Iterable[str] | None,
    ts: int,
) -> dict[str, Any]:
    return {
        "filePath": file_path,
        "scanResult": result,
        "viruses": list(viruses or ()),
        "timestamp": ts,
    }


def build_error_payload(file_path: str, code: str, message: str, ts: int) -> dict[str, Any]:
    return {
        "filePath": file_path,
        "error": {"code": code, "message": message},
        "timestamp": ts,
    }


class NotificationProvider(abc.ABC):
    """Delivers notifications to one family of channels."""

    #: Short identifier used in logs and metric labels.
    name: str = "unknown"

    @abc.abstractmethod
    def handles(self, channel: str) -> bool:
        """Return ``True`` when this provider can deliver to *channel*."""

    def default_channel(self) -> str | None:
        """Channel that receives every notification, or ``None``."""
        return None

    @abc.abstractmethod
    async def notify(
        self,
        file_path: str,
        result: str,
        viruses: Iterable[str] | None,
        ts: int,
        channel: str,
    ) -> None:
        """Send a scan result for *file_path* to *channel*."""

    @abc.abstractmethod
    async def notify_error(
        self,
        file_path: str,
        code: str,
        message: str,
        ts: int,
        channel: str,
    ) -> None:
        """Send an error for *file_path* to *channel*."""


class NotifierHub:
    """Fans notifications out to every configured provider.

    Args:
        providers: Providers in routing priority order.  May be empty, in
            which case every notification is a no-op.
    """

    def __init__(self, providers: Sequence[NotificationProvider] = ()) -> None:
        self._providers = list(providers)

    @property
    def providers(self) -> list[NotificationProvider]:
        return list(self._providers)

    def merged_channels(self, channels: Iterable[str] | None) -> list[str]:
        """Return *channels* plus every provider default, deduplicated in order."""
        merged: list[str] = []
        candidates = list(channels or ())
        candidates.extend(p.default_channel() for p in self._providers)
        for channel in candidates:
            if channel and channel not in merged:
                merged.append(channel)
        return merged

    async def notify_all(
        self,
        file_path: str,
        result: str,
        viruses: Iterable[str] | None,
        ts: int,
        channels: Iterable[str] | None,
    ) -> None:
        viruses = list(viruses or ())
        for channel in self.merged_channels(channels):
            provider = self._route(channel)
            if provider is None:
                continue
            try:
                await provider.notify(file_path, result, viruses, ts, channel)
                logger.debug(
                    "Notification sent provider=%s channel=%s file=%s result=%s",
                    provider.name,
                    channel,
                    file_path,
                    result,
                )
            except Exception as exc:
                notification_errors_total.labels(provider=provider.name).inc()
                logger.warning(
                    "Notification failed provider=%s channel=%s file=%s error=%r",
                    provider.name,
                    channel,
                    file_path,
                    exc,
                )

    async def notify_error_all(
        self,
        file_path: str,
        code: str,
        message: str,
        ts: int,
        channels: Iterable[str] | None,
    ) -> None:
        for channel in self.merged_channels(channels):
            provider = self._route(channel)
            if provider is None:
                continue
            try:
                await provider.notify_error(file_path, code, message, ts, channel)
                logger.debug(
                    "Error notification sent provider=%s channel=%s file=%s code=%s",
                    provider.name,
                    channel,
                    file_path,
                    code,
                )
            except Exception as exc:
                notification_errors_total.labels(provider=provider.name).inc()
                logger.warning(
                    "Error notification failed provider=%s channel=%s file=%s error=%r",
                    provider.name,
                    channel,
                    file_path,
                    exc,
                )

    def _route(self, channel: str) -> NotificationProvider | None:
        for provider in self._providers:
            if provider.handles(channel):
                return provider
        logger.warning("No notification provider handles channel=%s", channel)
        return None
