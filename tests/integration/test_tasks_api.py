"""Integration tests for the status API (``/api/tasks``, ``/health``, ``/metrics``).

Test coverage
-------------
* GET /api/tasks:
  - Empty store → no current task, empty lists
  - SCANNING and PENDING rows listed separately, camelCase fields
  - ``currentTask`` reflects the task this worker is scanning
* GET /api/tasks/{file_path}:
  - Path containing ``s3://`` and slashes resolves to the row
  - Unknown path → 404
* POST /api/tasks:
  - Existing file → PENDING row created and returned
  - Missing file → 422 with code ``FILE_NOT_EXIST``, no row
  - Body without ``filePath`` → 422 validation error
* GET /health → 200 when the engine passes its check, 500 otherwise
* GET /metrics → Prometheus exposition including scheduler metrics

The app is built with ``create_app(runtime, manage_runtime=False)`` so the
test owns the runtime and no background loops run.  ``httpx.AsyncClient``
with ``ASGITransport`` keeps requests on the test's event loop.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from bucketguard.main import create_app
from bucketguard.models.task import ScanState, Task

FILE = "s3://bucket/some/file.csv"


@pytest_asyncio.fixture
async def client(runtime):
    app = create_app(runtime, manage_runtime=False)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# GET /api/tasks
# ---------------------------------------------------------------------------


class TestListTasks:
    @pytest.mark.asyncio
    async def test_empty(self, client) -> None:
        response = await client.get("/api/tasks")

        assert response.status_code == 200
        assert response.json() == {"currentTask": None, "scanning": [], "pending": []}

    @pytest.mark.asyncio
    async def test_lists_scanning_and_pending(self, client, store) -> None:
        await store.create(Task(file_path="s3://b/p", created_ts=2, size_mb=1.5))
        await store.create(Task(file_path="s3://b/s", created_ts=1, scan_state=ScanState.SCANNING))
        await store.create(Task(file_path="s3://b/f", created_ts=0, scan_state=ScanState.FINISHED))

        body = (await client.get("/api/tasks")).json()

        assert [t["filePath"] for t in body["scanning"]] == ["s3://b/s"]
        assert [t["filePath"] for t in body["pending"]] == ["s3://b/p"]
        pending = body["pending"][0]
        assert pending["scanState"] == "PENDING"
        assert pending["sizeMb"] == 1.5
        assert pending["scanStartTs"] == -1

    @pytest.mark.asyncio
    async def test_current_task(self, client, runtime, store) -> None:
        task = await store.create(Task(file_path=FILE, created_ts=1, scan_state=ScanState.SCANNING))
        runtime.scheduler._current_task = task

        body = (await client.get("/api/tasks")).json()

        assert body["currentTask"]["filePath"] == FILE
        assert body["currentTask"]["scanState"] == "SCANNING"


# ---------------------------------------------------------------------------
# GET /api/tasks/{file_path}
# ---------------------------------------------------------------------------


class TestGetTask:
    @pytest.mark.asyncio
    async def test_returns_task_by_s3_path(self, client, store) -> None:
        await store.create(Task(file_path=FILE, created_ts=1, viruses=("Eicar",)))

        response = await client.get(f"/api/tasks/{FILE}")

        assert response.status_code == 200
        task = response.json()["task"]
        assert task["filePath"] == FILE
        assert task["viruses"] == ["Eicar"]

    @pytest.mark.asyncio
    async def test_unknown_path_is_404(self, client) -> None:
        response = await client.get("/api/tasks/s3://bucket/missing.csv")

        assert response.status_code == 404


# ---------------------------------------------------------------------------
# POST /api/tasks
# ---------------------------------------------------------------------------


class TestCreateTask:
    @pytest.mark.asyncio
    async def test_creates_pending_task(self, client, store, storage) -> None:
        storage.put(FILE, b"x" * 2048)

        response = await client.post(
            "/api/tasks",
            json={"filePath": FILE, "notifyChannels": ["https://hooks.example.com/x"]},
        )

        assert response.status_code == 200
        task = response.json()["task"]
        assert task["scanState"] == "PENDING"
        assert task["notifyChannels"] == ["https://hooks.example.com/x"]
        assert (await store.get(FILE)).scan_state is ScanState.PENDING

    @pytest.mark.asyncio
    async def test_missing_file_is_422(self, client, store) -> None:
        response = await client.post("/api/tasks", json={"filePath": FILE})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "FILE_NOT_EXIST"
        assert await store.get(FILE) is None

    @pytest.mark.asyncio
    async def test_body_without_file_path_is_422(self, client) -> None:
        response = await client.post("/api/tasks", json={"notifyChannels": []})

        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Health and metrics
# ---------------------------------------------------------------------------


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy_engine(self, client) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_unhealthy_engine(self, client, engine) -> None:
        engine.healthy = False

        response = await client.get("/health")

        assert response.status_code == 500
        assert response.json() == {"status": "unhealthy"}

    @pytest.mark.asyncio
    async def test_metrics_exposes_scheduler_counters(self, client, runtime) -> None:
        await runtime.scheduler.tick()

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "bucketguard_db_poll_count_total" in response.text
        assert "bucketguard_scan_count" in response.text
