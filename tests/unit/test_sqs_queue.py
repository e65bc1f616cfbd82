"""Unit tests for bucketguard/core/adapters/sqs_queue.py.

The boto3 SQS client is a :class:`unittest.mock.MagicMock`; no network access.

Coverage targets:
* ``receive`` — valid bodies become ``QueueMessage`` objects; poison
  messages (invalid JSON, missing ``filePath``) are deleted and the rest of
  the batch is still returned.
* ``receive`` — missing queue → ``FatalConfigurationError``.
* ``listen`` — handler invoked per message, loop exits on ``stop``,
  transient receive errors are retried after the back-off, handler errors
  are logged, fatal handler errors propagate.
* ``delete`` — uses the message's receipt handle.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from bucketguard.core.adapters.sqs_queue import SQSQueue
from bucketguard.core.errors import FatalConfigurationError
from bucketguard.core.queue import QueueMessage

QUEUE_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/scan-requests"


def _raw(body: str, receipt: str) -> dict:
    return {"MessageId": f"id-{receipt}", "ReceiptHandle": receipt, "Body": body}


def _valid(file_path: str, receipt: str, channels: list | None = None) -> dict:
    payload: dict = {"filePath": file_path}
    if channels is not None:
        payload["notifyChannels"] = channels
    return _raw(json.dumps(payload), receipt)


def _make_queue(client: MagicMock | None = None) -> tuple[SQSQueue, MagicMock]:
    client = client or MagicMock()
    return SQSQueue(QUEUE_URL, client=client, error_backoff=0.01), client


class TestReceive:
    @pytest.mark.asyncio
    async def test_valid_messages_are_parsed(self) -> None:
        queue, client = _make_queue()
        client.receive_message.return_value = {
            "Messages": [_valid("s3://b/a.csv", "r1", ["arn:aws:sns:eu-west-1:1:t"])]
        }

        messages = await queue.receive()

        assert len(messages) == 1
        assert messages[0].file_path == "s3://b/a.csv"
        assert messages[0].notify_channels == ("arn:aws:sns:eu-west-1:1:t",)
        assert messages[0].raw["ReceiptHandle"] == "r1"
        kwargs = client.receive_message.call_args.kwargs
        assert kwargs["QueueUrl"] == QUEUE_URL
        assert kwargs["MaxNumberOfMessages"] == 10

    @pytest.mark.asyncio
    async def test_null_channels_become_empty(self) -> None:
        queue, client = _make_queue()
        client.receive_message.return_value = {
            "Messages": [_raw('{"filePath": "s3://b/a.csv", "notifyChannels": null}', "r1")]
        }

        messages = await queue.receive()

        assert messages[0].notify_channels == ()

    @pytest.mark.asyncio
    async def test_poison_messages_deleted_and_batch_continues(self) -> None:
        queue, client = _make_queue()
        client.receive_message.return_value = {
            "Messages": [
                _raw("not json", "bad-1"),
                _valid("s3://b/a.csv", "ok-1"),
                _raw('{"notifyChannels": []}', "bad-2"),
                _raw('{"filePath": ""}', "bad-3"),
                _valid("s3://b/b.csv", "ok-2"),
            ]
        }

        messages = await queue.receive()

        assert [m.file_path for m in messages] == ["s3://b/a.csv", "s3://b/b.csv"]
        deleted = [c.kwargs["ReceiptHandle"] for c in client.delete_message.call_args_list]
        assert deleted == ["bad-1", "bad-2", "bad-3"]

    @pytest.mark.asyncio
    async def test_poison_delete_failure_does_not_stop_batch(self) -> None:
        queue, client = _make_queue()
        client.receive_message.return_value = {
            "Messages": [_raw("not json", "bad-1"), _valid("s3://b/a.csv", "ok-1")]
        }
        client.delete_message.side_effect = RuntimeError("network down")

        messages = await queue.receive()

        assert [m.file_path for m in messages] == ["s3://b/a.csv"]

    @pytest.mark.parametrize("code", ["QueueDoesNotExist", "AWS.SimpleQueueService.NonExistentQueue"])
    @pytest.mark.asyncio
    async def test_missing_queue_is_fatal(self, code: str) -> None:
        queue, client = _make_queue()
        client.receive_message.side_effect = ClientError(
            {"Error": {"Code": code, "Message": "gone"}}, "ReceiveMessage"
        )

        with pytest.raises(FatalConfigurationError):
            await queue.receive()


class TestListen:
    @pytest.mark.asyncio
    async def test_handler_called_for_each_message_until_stopped(self) -> None:
        queue, client = _make_queue()
        client.receive_message.return_value = {
            "Messages": [_valid("s3://b/a.csv", "r1"), _valid("s3://b/b.csv", "r2")]
        }
        seen: list[str] = []

        async def handler(message: QueueMessage) -> None:
            seen.append(message.file_path)
            if len(seen) == 2:
                queue.stop()

        await queue.listen(handler)

        assert seen == ["s3://b/a.csv", "s3://b/b.csv"]
        assert client.receive_message.call_count == 1

    @pytest.mark.asyncio
    async def test_transient_receive_error_is_retried(self) -> None:
        queue, client = _make_queue()
        client.receive_message.side_effect = [
            ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "ReceiveMessage"),
            {"Messages": [_valid("s3://b/a.csv", "r1")]},
        ]
        seen: list[str] = []

        async def handler(message: QueueMessage) -> None:
            seen.append(message.file_path)
            queue.stop()

        await queue.listen(handler)

        assert seen == ["s3://b/a.csv"]
        assert client.receive_message.call_count == 2

    @pytest.mark.asyncio
    async def test_handler_error_is_logged_and_loop_continues(self) -> None:
        queue, client = _make_queue()
        client.receive_message.return_value = {
            "Messages": [_valid("s3://b/a.csv", "r1"), _valid("s3://b/b.csv", "r2")]
        }
        seen: list[str] = []

        async def handler(message: QueueMessage) -> None:
            seen.append(message.file_path)
            if message.file_path.endswith("a.csv"):
                raise RuntimeError("boom")
            queue.stop()

        await queue.listen(handler)

        assert seen == ["s3://b/a.csv", "s3://b/b.csv"]

    @pytest.mark.asyncio
    async def test_fatal_handler_error_propagates(self) -> None:
        queue, client = _make_queue()
        client.receive_message.return_value = {"Messages": [_valid("s3://b/a.csv", "r1")]}

        async def handler(message: QueueMessage) -> None:
            raise FatalConfigurationError("table missing")

        with pytest.raises(FatalConfigurationError):
            await queue.listen(handler)

    @pytest.mark.asyncio
    async def test_missing_queue_stops_listener(self) -> None:
        queue, client = _make_queue()
        client.receive_message.side_effect = ClientError(
            {"Error": {"Code": "QueueDoesNotExist", "Message": "gone"}}, "ReceiveMessage"
        )

        async def handler(message: QueueMessage) -> None:
            raise AssertionError("handler must not be called")

        with pytest.raises(FatalConfigurationError):
            await queue.listen(handler)


@pytest.mark.asyncio
async def test_delete_uses_receipt_handle() -> None:
    queue, client = _make_queue()
    message = QueueMessage(file_path="s3://b/a.csv", raw=_valid("s3://b/a.csv", "r1"))

    await queue.delete(message)

    client.delete_message.assert_called_once_with(QueueUrl=QUEUE_URL, ReceiptHandle="r1")
