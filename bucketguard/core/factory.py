"""Collaborator factories keyed by configuration.

Each factory reads the relevant backend key from
:class:`~bucketguard.config.Settings` and returns the matching adapter.
Factories run once at process start, from
:func:`bucketguard.runtime.build_runtime`.

==================  ======================  =====================================
Setting             Value                   Adapter
==================  ======================  =====================================
TASK_STORE_BACKEND  ``dynamodb``            :class:`DynamoDBTaskStore`
                    ``sql``                 :class:`SQLTaskStore`
                    ``memory``              :class:`MemoryTaskStore`
STORAGE_BACKEND     ``s3``                  :class:`S3Storage`
QUEUE_BACKEND       ``sqs``                 :class:`SQSQueue`
                    ``none``                no queue; tasks arrive via the API
==================  ======================  =====================================

Notification providers are always installed so that per-task channels can
be served; ``SNS_TOPIC_ARN`` and ``WEBHOOK_URL`` only add default channels.
"""

from __future__ import annotations

import logging

from bucketguard.config import Settings
from bucketguard.core.adapters.dynamodb_store import DynamoDBTaskStore
from bucketguard.core.adapters.memory_store import MemoryTaskStore
from bucketguard.core.adapters.s3_storage import S3Storage
from bucketguard.core.adapters.sns_notifier import SNSNotifier
from bucketguard.core.adapters.sql_store import SQLTaskStore
from bucketguard.core.adapters.sqs_queue import SQSQueue
from bucketguard.core.adapters.webhook_notifier import WebhookNotifier
from bucketguard.core.av_engine import AVEngineAdapter
from bucketguard.core.clamav_adapter import ClamAVAdapter
from bucketguard.core.notifier import NotifierHub
from bucketguard.core.queue import TaskQueue
from bucketguard.core.storage import FileStorage
from bucketguard.core.task_store import TaskStore

logger = logging.getLogger(__name__)


def build_task_store(settings: Settings) -> TaskStore:
    backend = settings.TASK_STORE_BACKEND
    if backend == "dynamodb":
        store: TaskStore = DynamoDBTaskStore(
            settings.DYNAMODB_TABLE_NAME,
            region_name=settings.DYNAMODB_REGION,
        )
    elif backend == "sql":
        store = SQLTaskStore.from_url(settings.DATABASE_URL)
    elif backend == "memory":
        store = MemoryTaskStore()
    else:
        raise ValueError(f"unsupported TASK_STORE_BACKEND {backend!r}")
    logger.info("Task store backend=%s", backend)
    return store


def build_storage(settings: Settings) -> FileStorage:
    backend = settings.STORAGE_BACKEND
    if backend == "s3":
        return S3Storage(region_name=settings.S3_REGION, tag_prefix=settings.TAG_PREFIX)
    raise ValueError(f"unsupported STORAGE_BACKEND {backend!r}")


def build_queue(settings: Settings) -> TaskQueue | None:
    backend = settings.QUEUE_BACKEND
    if backend == "none":
        logger.info("No task queue configured; consider using a queue for better resiliency")
        return None
    if backend == "sqs":
        return SQSQueue(
            settings.SQS_QUEUE_URL or "",
            region_name=settings.SQS_REGION,
            wait_time_seconds=settings.SQS_WAIT_TIME_SECONDS,
            visibility_timeout=settings.SQS_VISIBILITY_TIMEOUT,
            max_messages=settings.SQS_MAX_MESSAGES,
            error_backoff=settings.SQS_ERROR_BACKOFF_SECONDS,
        )
    raise ValueError(f"unsupported QUEUE_BACKEND {backend!r}")


def build_notifier(settings: Settings) -> NotifierHub:
    return NotifierHub(
        [
            SNSNotifier(default_topic_arn=settings.SNS_TOPIC_ARN),
            WebhookNotifier(
                default_url=settings.WEBHOOK_URL,
                timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            ),
        ]
    )


def build_engine(settings: Settings) -> AVEngineAdapter:
    return ClamAVAdapter(
        host=settings.CLAMAV_HOST,
        port=settings.CLAMAV_PORT,
        timeout=settings.CLAMAV_TIMEOUT,
        init_attempts=settings.CLAMAV_INIT_ATTEMPTS,
        init_delay=settings.CLAMAV_INIT_DELAY_SECONDS,
        eicar_infected_validation=settings.EICAR_INFECTED_VALIDATION,
    )
