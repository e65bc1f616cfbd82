"""Concrete collaborator adapters.

**Task stores** (implement :class:`~bucketguard.core.task_store.TaskStore`):

* :class:`~bucketguard.core.adapters.dynamodb_store.DynamoDBTaskStore` — DynamoDB table (default)
* :class:`~bucketguard.core.adapters.sql_store.SQLTaskStore` — PostgreSQL / SQLite via SQLAlchemy
* :class:`~bucketguard.core.adapters.memory_store.MemoryTaskStore` — in-process, development only

**Storage** (implements :class:`~bucketguard.core.storage.FileStorage`):

* :class:`~bucketguard.core.adapters.s3_storage.S3Storage` — Amazon S3

**Queues** (implement :class:`~bucketguard.core.queue.TaskQueue`):

* :class:`~bucketguard.core.adapters.sqs_queue.SQSQueue` — Amazon SQS

**Notification providers** (implement :class:`~bucketguard.core.notifier.NotificationProvider`):

* :class:`~bucketguard.core.adapters.sns_notifier.SNSNotifier` — Amazon SNS topics
* :class:`~bucketguard.core.adapters.webhook_notifier.WebhookNotifier` — HTTP webhooks
"""

from bucketguard.core.adapters.dynamodb_store import DynamoDBTaskStore
from bucketguard.core.adapters.memory_store import MemoryTaskStore
from bucketguard.core.adapters.s3_storage import S3Storage
from bucketguard.core.adapters.sns_notifier import SNSNotifier
from bucketguard.core.adapters.sql_store import SQLTaskStore
from bucketguard.core.adapters.sqs_queue import SQSQueue
from bucketguard.core.adapters.webhook_notifier import WebhookNotifier

__all__ = [
    "DynamoDBTaskStore",
    "MemoryTaskStore",
    "S3Storage",
    "SNSNotifier",
    "SQLTaskStore",
    "SQSQueue",
    "WebhookNotifier",
]
