"""API routes for task status and manual task submission.

Endpoints
---------
GET  /api/tasks
    The task this worker is scanning (if any) plus every SCANNING and
    PENDING task in the store.

GET  /api/tasks/{file_path}
    A single task by file path.  The path may contain slashes, e.g.
    ``/api/tasks/s3://bucket/some/file.csv``.

POST /api/tasks
    Create a PENDING task, exactly as a queue message would.  Answers 422
    with code ``FILE_NOT_EXIST`` when the file is missing from storage.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from bucketguard.core.errors import FileNotInStorageError
from bucketguard.models.task import ScanState
from bucketguard.runtime import Runtime
from bucketguard.schemas.task import TaskListResponse, TaskMessage, TaskOut, TaskResponse

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="worker runtime is not available")
    return runtime


@router.get("", response_model=TaskListResponse)
async def list_tasks(runtime: Runtime = Depends(get_runtime)) -> TaskListResponse:
    tasks = await runtime.store.list_by_states(ScanState.PENDING, ScanState.SCANNING)
    current = runtime.scheduler.current_task

    current_out = None
    if current is not None:
        row = next((t for t in tasks if t.file_path == current.file_path), current)
        current_out = TaskOut.from_task(row)

    return TaskListResponse(
        current_task=current_out,
        scanning=[TaskOut.from_task(t) for t in tasks if t.scan_state is ScanState.SCANNING],
        pending=[TaskOut.from_task(t) for t in tasks if t.scan_state is ScanState.PENDING],
    )


@router.get("/{file_path:path}", response_model=TaskResponse)
async def get_task(file_path: str, runtime: Runtime = Depends(get_runtime)) -> TaskResponse:
    task = await runtime.store.get(file_path)
    if task is None:
        raise HTTPException(status_code=404, detail="task not found")
    return TaskResponse(task=TaskOut.from_task(task))


@router.post("", response_model=TaskResponse)
async def create_task(
    body: TaskMessage,
    runtime: Runtime = Depends(get_runtime),
) -> TaskResponse | JSONResponse:
    try:
        task = await runtime.ingestion.submit(body.file_path, body.notify_channels)
    except FileNotInStorageError as exc:
        return JSONResponse(
            status_code=422,
            content={"detail": {"code": exc.code, "message": str(exc)}},
        )
    return TaskResponse(task=TaskOut.from_task(task))
