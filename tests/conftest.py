"""Shared pytest configuration and fixtures for BucketGuard tests.

Sets environment defaults before any bucketguard module is imported, so that
``bucketguard.config.get_settings()`` never reaches for AWS in the test
environment, and provides the in-process collaborators from
:mod:`fakes`.
"""
from __future__ import annotations

import os

import pytest

# Set env defaults before any bucketguard module is imported
os.environ.setdefault("TASK_STORE_BACKEND", "memory")
os.environ.setdefault("QUEUE_BACKEND", "none")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("ENVIRONMENT", "test")

from fakes import FakeClock, FakeEngine, FakeStorage, RecordingProvider  # noqa: E402

from bucketguard.config import Settings, get_settings  # noqa: E402
from bucketguard.core.adapters.memory_store import MemoryTaskStore  # noqa: E402
from bucketguard.core.notifier import NotifierHub  # noqa: E402
from bucketguard.runtime import Runtime  # noqa: E402


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryTaskStore:
    return MemoryTaskStore()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def notifier(provider: RecordingProvider) -> NotifierHub:
    return NotifierHub([provider])


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        POLL_INTERVAL_SECONDS=0.05,
        BUSY_BACKOFF_FACTOR=5,
        MARK_STALE_AFTER_SECONDS=3600,
        SCAN_TIMEOUT_SECONDS=5,
        TASK_STORE_BACKEND="memory",
        QUEUE_BACKEND="none",
    )


@pytest.fixture
def runtime(settings, store, storage, notifier, engine, clock) -> Runtime:
    return Runtime(
        settings,
        store=store,
        storage=storage,
        notifier=notifier,
        engine=engine,
        clock=clock,
    )
