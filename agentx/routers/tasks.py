"""
AgentX Engine - Tasks Router

Endpoints:
    POST /api/tasks/upload                          - Upload a contact sheet and distribute it (admin)
    GET  /api/tasks/agent-tasks                     - Caller's assignment batches, newest first
    PUT  /api/tasks/agent-tasks/{task_id}/status    - Set completion flag on an owned task
    POST /api/tasks/reconcile                       - Distribute orphaned tasks (admin)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from ..config import get_settings
from ..core.errors import ErrorResponse, PayloadTooLargeError
from ..core.models import AssignmentBatch, AssignmentBatchWithTasks, Task
from ..core.security import AuthContext, get_current_user, require_admin
from ..ingest import load_tasks
from ..services import task_service
from ..services.store import PostgresStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["Tasks"])


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------


class BatchSummary(BaseModel):
    """One created batch, as reported back to the uploader."""

    id: UUID
    agent_id: UUID
    task_ids: list[UUID]
    upload_date: datetime

    @classmethod
    def from_batch(cls, batch: AssignmentBatch) -> "BatchSummary":
        return cls(
            id=batch.id,
            agent_id=batch.agent_id,
            task_ids=list(batch.task_ids),
            upload_date=batch.upload_date,
        )


class UploadResponse(BaseModel):
    message: str
    task_count: int
    agent_count: int
    batches: list[BatchSummary]


class ReconcileResponse(BaseModel):
    message: str
    task_count: int
    batches: list[BatchSummary]


class StatusUpdateRequest(BaseModel):
    completed: bool = Field(..., description="New completion flag")


class StatusUpdateResponse(BaseModel):
    message: str
    task: Task


ERROR_RESPONSES: dict[int | str, dict] = {
    400: {"model": ErrorResponse, "description": "Invalid upload or no active agents"},
    401: {"model": ErrorResponse, "description": "Not authenticated"},
    403: {"model": ErrorResponse, "description": "Not permitted"},
    503: {"model": ErrorResponse, "description": "Database unavailable"},
}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={**ERROR_RESPONSES, 413: {"model": ErrorResponse}},
    summary="Upload a contact sheet and distribute its rows",
)
async def upload_tasks(
    file: Annotated[UploadFile, File(description="CSV, XLS or XLSX contact sheet")],
    auth: AuthContext = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
) -> UploadResponse:
    """
    Parse the sheet, validate FirstName/Phone/Notes on every row, then
    persist tasks and split them across active agents in one transaction.
    """
    limit = get_settings().MAX_UPLOAD_BYTES
    too_large = PayloadTooLargeError(f"File exceeds the {limit} byte upload limit")
    if file.size is not None and file.size > limit:
        raise too_large

    # Read at most one byte past the limit so an unsized stream is still capped
    content = await file.read(limit + 1)
    if len(content) > limit:
        raise too_large

    logger.info(
        f"Upload by {auth.user_id}: {file.filename} ({file.content_type}, {len(content)} bytes)"
    )

    # Synchronous pandas parse runs in the threadpool
    tasks = await run_in_threadpool(load_tasks, content, file.content_type)
    result = await task_service.distribute_upload(store, tasks)

    return UploadResponse(
        message="Tasks distributed successfully",
        task_count=result.task_count,
        agent_count=result.agent_count,
        batches=[BatchSummary.from_batch(b) for b in result.batches],
    )


@router.get(
    "/agent-tasks",
    response_model=list[AssignmentBatchWithTasks],
    responses=ERROR_RESPONSES,
    summary="List the caller's assignment batches",
)
async def get_agent_tasks(
    auth: AuthContext = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
) -> list[AssignmentBatchWithTasks]:
    return await task_service.get_agent_batches(store, auth.user_id)


@router.put(
    "/agent-tasks/{task_id}/status",
    response_model=StatusUpdateResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse}},
    summary="Set the completion flag of an assigned task",
)
async def update_task_status(
    task_id: UUID,
    body: StatusUpdateRequest,
    auth: AuthContext = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
) -> StatusUpdateResponse:
    task = await task_service.update_task_status(store, auth.user_id, task_id, body.completed)
    return StatusUpdateResponse(message="Task updated successfully", task=task)


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    responses=ERROR_RESPONSES,
    summary="Distribute tasks missing from every batch",
)
async def reconcile_tasks(
    auth: AuthContext = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
) -> ReconcileResponse:
    batches = await task_service.reconcile_orphaned_tasks(store)
    task_count = sum(len(b.task_ids) for b in batches)
    message = f"Reassigned {task_count} orphaned tasks" if batches else "No orphaned tasks"
    return ReconcileResponse(
        message=message,
        task_count=task_count,
        batches=[BatchSummary.from_batch(b) for b in batches],
    )
