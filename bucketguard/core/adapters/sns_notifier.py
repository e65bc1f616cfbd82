"""Amazon SNS notification provider.

Channels are SNS topic ARNs (``arn:aws:sns:<region>:<account>:<topic>``).
The region is read from the ARN so one provider can publish to topics in
several regions; one boto3 client is kept per region.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable

import boto3

from bucketguard.core.notifier import (
    NotificationProvider,
    build_error_payload,
    build_result_payload,
)

logger = logging.getLogger(__name__)

_ARN_PREFIX = "arn:aws:sns"


def region_from_arn(arn: str) -> str:
    """Return the region component of an SNS topic ARN."""
    parts = arn.split(":")
    if len(parts) < 6 or not parts[3]:
        raise ValueError(f"not an SNS topic ARN: {arn!r}")
    return parts[3]


class SNSNotifier(NotificationProvider):
    """Publishes notification payloads to SNS topics.

    Args:
        default_topic_arn: Topic that receives every notification, or
            ``None`` to only publish to per-task channels.
    """

    name = "sns"

    def __init__(self, default_topic_arn: str | None = None) -> None:
        self._default_topic_arn = default_topic_arn
        self._clients: dict[str, Any] = {}

    def handles(self, channel: str) -> bool:
        return channel.startswith(_ARN_PREFIX)

    def default_channel(self) -> str | None:
        return self._default_topic_arn

    async def notify(
        self,
        file_path: str,
        result: str,
        viruses: Iterable[str] | None,
        ts: int,
        channel: str,
    ) -> None:
        await self._publish(channel, build_result_payload(file_path, result, viruses, ts))

    async def notify_error(
        self,
        file_path: str,
        code: str,
        message: str,
        ts: int,
        channel: str,
    ) -> None:
        await self._publish(channel, build_error_payload(file_path, code, message, ts))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_client(self, region_name: str) -> Any:
        return boto3.client("sns", region_name=region_name)

    def _client_for(self, topic_arn: str) -> Any:
        region = region_from_arn(topic_arn)
        if region not in self._clients:
            self._clients[region] = self._build_client(region)
        return self._clients[region]

    async def _publish(self, topic_arn: str, payload: dict[str, Any]) -> None:
        client = self._client_for(topic_arn)
        await asyncio.to_thread(
            client.publish,
            TopicArn=topic_arn,
            Message=json.dumps(payload),
        )
        logger.debug("SNS published topic=%s file=%s", topic_arn, payload["filePath"])
