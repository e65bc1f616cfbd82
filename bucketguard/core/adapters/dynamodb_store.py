"""DynamoDB task store.

:class:`DynamoDBTaskStore` keeps one item per task in a DynamoDB table whose
partition key is ``filePath``.  Items use the camelCase layout produced by
:meth:`~bucketguard.models.task.Task.to_item`.

**Claim protocol:** a guarded transition is a single ``UpdateItem`` call with a
``ConditionExpression`` on ``scanState``.  DynamoDB evaluates the condition and
applies the update atomically, so when several workers race for the same
pending task exactly one update succeeds; the others receive
``ConditionalCheckFailedException``, which is translated into
:class:`~bucketguard.core.errors.RaceLostError`.

**Async compatibility:** boto3 is synchronous.  Every call is dispatched to
:func:`asyncio.to_thread` so the event loop is never blocked.

**Numbers:** the boto3 resource layer returns numbers as
:class:`decimal.Decimal` and refuses Python floats on write.  ``sizeMb`` is
converted to ``Decimal`` before ``PutItem``; reads are normalised by
:meth:`Task.from_item`.

Usage::

    store = DynamoDBTaskStore("bucketguard-tasks", region_name="eu-west-1")
    pending = await store.list_by_states(ScanState.PENDING)
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import Any

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from bucketguard.core.errors import FatalConfigurationError, RaceLostError, TaskNotFoundError
from bucketguard.core.task_store import TaskStore
from bucketguard.models.task import ScanState, Task

logger = logging.getLogger(__name__)

#: Python attribute name → DynamoDB attribute name for transition fields.
_ATTRIBUTE_NAMES: dict[str, str] = {
    "scan_start_ts": "scanStartTs",
    "scan_end_ts": "scanEndTs",
    "scan_result": "scanResult",
    "viruses": "viruses",
}

_CONDITION_FAILED = "ConditionalCheckFailedException"
_TABLE_MISSING = "ResourceNotFoundException"


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _to_dynamo_value(value: Any) -> Any:
    """Convert *value* into something the boto3 resource serializer accepts."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, tuple):
        return list(value)
    return value


class DynamoDBTaskStore(TaskStore):
    """:class:`~bucketguard.core.task_store.TaskStore` backed by a DynamoDB table.

    Args:
        table_name: Name of the DynamoDB table.
        region_name: AWS region of the table.  ``None`` uses the boto3
            default resolution chain.
        table: Pre-built boto3 ``Table`` resource.  Tests pass a mock here;
            production code lets the store build its own.
    """

    backend_name = "dynamodb"

    def __init__(
        self,
        table_name: str,
        *,
        region_name: str | None = None,
        table: Any | None = None,
    ) -> None:
        self._table_name = table_name
        self._region_name = region_name
        self._table = table if table is not None else self._build_table()

    def _build_table(self) -> Any:
        resource = boto3.resource("dynamodb", region_name=self._region_name)
        return resource.Table(self._table_name)

    # ------------------------------------------------------------------
    # TaskStore interface
    # ------------------------------------------------------------------

    async def list_by_states(self, *states: ScanState) -> list[Task]:
        items = await self._call(self._scan_states_sync, states)
        tasks = [Task.from_item(item) for item in items]
        tasks.sort(key=lambda t: t.created_ts)
        return tasks

    async def get(self, file_path: str) -> Task | None:
        response = await self._call(self._table.get_item, Key={"filePath": file_path})
        item = response.get("Item")
        return Task.from_item(item) if item else None

    async def create(self, task: Task) -> Task:
        item = {key: _to_dynamo_value(value) for key, value in task.to_item().items()}
        await self._call(self._table.put_item, Item=item)
        logger.debug(
            "DynamoDBTaskStore: put item table=%s file=%s state=%s",
            self._table_name,
            task.file_path,
            task.scan_state.value,
        )
        return task

    async def _write(
        self,
        file_path: str,
        new_state: ScanState,
        expected: ScanState | None,
        increment_attempts: bool,
        fields: dict[str, Any],
    ) -> Task:
        set_clauses = ["scanState = :scanState", "scanAttempts = scanAttempts + :incrementBy"]
        values: dict[str, Any] = {
            ":scanState": new_state.value,
            ":incrementBy": 1 if increment_attempts else 0,
        }
        for name, value in fields.items():
            attribute = _ATTRIBUTE_NAMES[name]
            set_clauses.append(f"{attribute} = :{attribute}")
            values[f":{attribute}"] = _to_dynamo_value(value)

        if expected is not None:
            condition = Attr("scanState").eq(expected.value)
        else:
            # UpdateItem creates missing items; an unconditional lifecycle
            # write must never resurrect a row.
            condition = Attr("filePath").exists()

        try:
            response = await self._call(
                self._table.update_item,
                Key={"filePath": file_path},
                UpdateExpression="SET " + ", ".join(set_clauses),
                ConditionExpression=condition,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                if expected is not None:
                    raise RaceLostError(file_path, expected.value) from exc
                raise TaskNotFoundError(file_path) from exc
            raise

        return Task.from_item(response["Attributes"])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        """Run blocking *fn* on a worker thread, translating a missing table."""
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ClientError as exc:
            if _error_code(exc) == _TABLE_MISSING:
                raise FatalConfigurationError(
                    f"DynamoDB table {self._table_name!r} does not exist"
                ) from exc
            raise

    def _scan_states_sync(self, states: tuple[ScanState, ...]) -> list[dict[str, Any]]:
        """Synchronous: full-table scan per state, following pagination."""
        items: list[dict[str, Any]] = []
        for state in states:
            params: dict[str, Any] = {"FilterExpression": Attr("scanState").eq(state.value)}
            while True:
                page = self._table.scan(**params)
                items.extend(page.get("Items", []))
                last_key = page.get("LastEvaluatedKey")
                if not last_key:
                    break
                params["ExclusiveStartKey"] = last_key
        return items
