"""Pydantic schemas for task messages and the task status API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bucketguard.models.task import ScanResult, ScanState, Task


class TaskMessage(BaseModel):
    """Body of a scan request, from a queue message or ``POST /api/tasks``.

    Unknown keys are ignored so producers may attach their own metadata.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    file_path: str = Field(..., alias="filePath", min_length=1)
    notify_channels: list[str] = Field(default_factory=list, alias="notifyChannels")

    @field_validator("notify_channels", mode="before")
    @classmethod
    def default_channels(cls, v: object) -> object:
        return [] if v is None else v


class TaskOut(BaseModel):
    """Read schema for a task row, serialised with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath")
    scan_state: ScanState = Field(alias="scanState")
    created_ts: int = Field(alias="createdTs")
    scan_start_ts: int = Field(alias="scanStartTs")
    scan_end_ts: int = Field(alias="scanEndTs")
    scan_result: ScanResult = Field(alias="scanResult")
    viruses: list[str]
    scan_attempts: int = Field(alias="scanAttempts")
    size_mb: float = Field(alias="sizeMb")
    file_hash: str = Field(alias="fileHash")
    notify_channels: list[str] = Field(alias="notifyChannels")

    @classmethod
    def from_task(cls, task: Task) -> "TaskOut":
        return cls.model_validate(task.to_item())


class TaskListResponse(BaseModel):
    """Snapshot of the work visible to this worker."""

    model_config = ConfigDict(populate_by_name=True)

    current_task: TaskOut | None = Field(default=None, alias="currentTask")
    scanning: list[TaskOut]
    pending: list[TaskOut]


class TaskResponse(BaseModel):
    task: TaskOut
