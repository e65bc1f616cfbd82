"""Application configuration via Pydantic Settings.

All configuration is driven by environment variables.  Invalid values raise a
``ValidationError`` at startup so misconfigured deployments fail fast.

Usage::

    from bucketguard.config import get_settings

    settings = get_settings()
    print(settings.POLL_INTERVAL_SECONDS)

The ``get_settings`` function is cached with ``functools.lru_cache``.  To
override settings in tests, build a ``Settings(...)`` instance directly and
pass it to :func:`bucketguard.runtime.build_runtime`, or set the relevant
environment variables before calling ``get_settings()`` for the first time.
"""
from __future__ import annotations

import functools

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

TASK_STORE_BACKENDS = frozenset({"dynamodb", "sql", "memory"})
STORAGE_BACKENDS = frozenset({"s3"})
QUEUE_BACKENDS = frozenset({"sqs", "none"})


class Settings(BaseSettings):
    """BucketGuard worker settings.

    Environment variables are read case-insensitively.  A ``.env`` file in the
    working directory is loaded automatically when present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduler
    POLL_INTERVAL_SECONDS: float = Field(
        default=5.0,
        gt=0,
        description="Base interval between task-store polls while the worker is idle",
    )
    BUSY_BACKOFF_FACTOR: float = Field(
        default=5.0,
        ge=1,
        description="Poll interval multiplier applied while a scan is in flight",
    )
    MARK_STALE_AFTER_SECONDS: float = Field(
        default=3600,
        gt=0,
        description="A SCANNING task older than this is presumed abandoned and reclaimed",
    )
    SCAN_TIMEOUT_SECONDS: float = Field(
        default=1800,
        gt=0,
        description="Wall-clock deadline for a single scan-engine call",
    )
    MAX_SCAN_ATTEMPTS: int = Field(
        default=5,
        ge=1,
        description="Maximum scan attempts per task (currently not enforced)",
    )

    # Task store
    TASK_STORE_BACKEND: str = Field(default="dynamodb")
    DYNAMODB_TABLE_NAME: str = Field(default="bucketguard-tasks")
    DYNAMODB_REGION: str | None = Field(default=None)
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./bucketguard.db",
        description="Async SQLAlchemy DSN used when TASK_STORE_BACKEND=sql",
    )

    # Object storage
    STORAGE_BACKEND: str = Field(default="s3")
    S3_REGION: str | None = Field(default=None)
    TAG_PREFIX: str = Field(
        default="BUCKETGUARD",
        min_length=1,
        description="Prefix for the result/timestamp tags written on scanned objects",
    )

    # Queue
    QUEUE_BACKEND: str = Field(default="none")
    SQS_QUEUE_URL: str | None = Field(default=None)
    SQS_REGION: str | None = Field(default=None)
    SQS_WAIT_TIME_SECONDS: int = Field(default=20, ge=0, le=20)
    SQS_VISIBILITY_TIMEOUT: int = Field(default=300, ge=0)
    SQS_MAX_MESSAGES: int = Field(default=10, ge=1, le=10)
    SQS_ERROR_BACKOFF_SECONDS: float = Field(
        default=10.0,
        ge=0,
        description="Pause after a failed receive so a broken queue is not hammered",
    )

    # Notifications
    SNS_TOPIC_ARN: str | None = Field(
        default=None,
        description="Default SNS topic notified for every task",
    )
    WEBHOOK_URL: str | None = Field(
        default=None,
        description="Default webhook URL notified for every task",
    )
    WEBHOOK_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # ClamAV
    CLAMAV_HOST: str = Field(default="clamav")
    CLAMAV_PORT: int = Field(default=3310, ge=1, le=65535)
    CLAMAV_TIMEOUT: float = Field(default=60.0, gt=0)
    CLAMAV_INIT_ATTEMPTS: int = Field(default=5, ge=1)
    CLAMAV_INIT_DELAY_SECONDS: float = Field(default=5.0, ge=0)
    EICAR_INFECTED_VALIDATION: bool = Field(
        default=True,
        description="Require the EICAR health probe to be reported as infected",
    )

    # Runtime
    LOG_LEVEL: str = Field(default="INFO")
    ENVIRONMENT: str = Field(
        default="production",
        description="Deployment environment: development, staging, or production",
    )
    API_ENABLED: bool = Field(
        default=True,
        description="Serve the status API alongside the worker",
    )
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8080, ge=1, le=65535)

    @field_validator("TASK_STORE_BACKEND", "STORAGE_BACKEND", "QUEUE_BACKEND")
    @classmethod
    def normalise_backend(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("TASK_STORE_BACKEND")
    @classmethod
    def validate_task_store_backend(cls, v: str) -> str:
        if v not in TASK_STORE_BACKENDS:
            raise ValueError(f"TASK_STORE_BACKEND must be one of {sorted(TASK_STORE_BACKENDS)}")
        return v

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v not in STORAGE_BACKENDS:
            raise ValueError(f"STORAGE_BACKEND must be one of {sorted(STORAGE_BACKENDS)}")
        return v

    @field_validator("QUEUE_BACKEND")
    @classmethod
    def validate_queue_backend(cls, v: str) -> str:
        if v not in QUEUE_BACKENDS:
            raise ValueError(f"QUEUE_BACKEND must be one of {sorted(QUEUE_BACKENDS)}")
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not (v.startswith("postgresql") or v.startswith("sqlite")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite DSN")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    @model_validator(mode="after")
    def validate_queue_settings(self) -> "Settings":
        if self.QUEUE_BACKEND == "sqs" and not self.SQS_QUEUE_URL:
            raise ValueError("SQS_QUEUE_URL is required when QUEUE_BACKEND=sqs")
        return self

    @property
    def busy_poll_interval(self) -> float:
        """Poll interval used while a scan is in flight."""
        return self.POLL_INTERVAL_SECONDS * self.BUSY_BACKOFF_FACTOR


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    The first call reads environment variables (and ``.env``).  Subsequent
    calls return the cached instance.  Clear the cache with
    ``get_settings.cache_clear()`` between tests.
    """
    return Settings()
