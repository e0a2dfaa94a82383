"""
Jobs API - enqueue, inspect, cancel and retry note generation jobs.
"""

import logging
from datetime import datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from notequeue.api.v1.deps import (
    get_gateway,
    get_scheduler,
    get_store,
    get_subscriptions,
)
from notequeue.api.v1.endpoints.utils.jobs import (
    format_sse,
    parse_cursor,
    validate_input_data,
)
from notequeue.api.v1.helpers.authentication import AuthenticatedUser, get_current_user
from notequeue.core.gateway import StatusGateway
from notequeue.core.priority import priority_for_tier
from notequeue.core.scheduler import Scheduler
from notequeue.core.store import SqlJobStore
from notequeue.core.subscriptions import SubscriptionProvider
from notequeue.models.enums import JobStatus, JobType
from notequeue.models.pydantic_models.jobs import JobRecord, JobStats

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class JobCreateRequest(BaseModel):
    job_type: JobType
    input_data: dict[str, Any] = Field(default_factory=dict)
    estimated_duration_seconds: int | None = Field(None, ge=0)


class JobUpdateRequest(BaseModel):
    action: Literal["cancel", "retry"]


class JobCreatedOut(BaseModel):
    job_id: str
    position: int | None = None
    priority: str
    estimated_wait_time_seconds: int | None = None


class JobOut(BaseModel):
    job_id: str
    user_id: str
    job_type: JobType
    priority: str
    status: JobStatus
    input_data: dict[str, Any]
    output_data: Any | None = None
    error_message: str | None = None
    error_details: dict[str, Any] | None = None
    progress: int
    retry_count: int
    max_retries: int
    can_retry: bool
    estimated_duration_seconds: int | None = None
    actual_duration_seconds: int | None = None
    worker_id: str | None = None
    queue_position: int | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_record(cls, job: JobRecord, queue_position: int | None = None) -> "JobOut":
        return cls(
            **job.model_dump(exclude={"pinned_to"}),
            can_retry=job.can_retry,
            queue_position=queue_position,
        )


class JobListResponse(BaseModel):
    jobs: list[JobOut]
    total: int
    page: int
    limit: int
    has_more: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/", response_model=JobCreatedOut, status_code=201)
async def create_job(
    data: JobCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SqlJobStore = Depends(get_store),
    gateway: StatusGateway = Depends(get_gateway),
    subscriptions: SubscriptionProvider = Depends(get_subscriptions),
    scheduler: Scheduler | None = Depends(get_scheduler),
):
    """
    Queue a note generation job for the current user.

    Priority comes from the user's subscription tier. The returned position is
    the job's 1-indexed rank in the queue at creation time and may already be
    stale when the client reads it.
    """
    input_data = validate_input_data(data.job_type.value, data.input_data)

    tier = await subscriptions.get_subscription_plan(user.user_id)
    priority = priority_for_tier(tier)

    job_id = await store.enqueue(
        user.user_id,
        data.job_type.value,
        input_data,
        priority.value,
        estimated_duration_seconds=data.estimated_duration_seconds,
    )
    if scheduler is not None:
        scheduler.wake()

    position = await store.queue_position(job_id)
    wait = await gateway.estimate_wait_for(job_id) if position is not None else None
    logger.info(
        f"User {user.user_id} queued {data.job_type.value} job {job_id} at position {position}"
    )
    return JobCreatedOut(
        job_id=job_id,
        position=position,
        priority=priority.value,
        estimated_wait_time_seconds=wait,
    )


@router.get("/", response_model=JobListResponse)
async def list_jobs(
    status: JobStatus | None = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: StatusGateway = Depends(get_gateway),
):
    """List the current user's jobs, newest first."""
    jobs, total = await gateway.list_jobs(
        user.user_id,
        page=page,
        limit=limit,
        status=status.value if status else None,
    )
    return JobListResponse(
        jobs=[JobOut.from_record(j) for j in jobs],
        total=total,
        page=page,
        limit=limit,
        has_more=page * limit < total,
    )


@router.get("/stats", response_model=JobStats)
async def get_stats(
    global_stats: bool = Query(False, alias="global"),
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: StatusGateway = Depends(get_gateway),
):
    """Job counts by status, average duration and the current wait estimate."""
    return await gateway.get_stats(None if global_stats else user.user_id)


@router.get("/events")
async def stream_events(
    request: Request,
    after: int | None = Query(None, ge=0),
    last_event_id: str | None = Header(None, alias="Last-Event-ID"),
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: StatusGateway = Depends(get_gateway),
):
    """Server-Sent Events feed of the current user's job transitions."""
    cursor = parse_cursor(after, last_event_id)

    async def event_stream():
        async for event in gateway.subscribe(user.user_id, after_event_id=cursor):
            if await request.is_disconnected():
                break
            yield format_sse(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/{job_id}", response_model=JobOut)
async def get_job(
    job_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    gateway: StatusGateway = Depends(get_gateway),
):
    """Get a single job; 404 when unknown, 403 when owned by someone else."""
    job = await gateway.get_job(job_id, user.user_id)
    position = (
        await gateway.queue_position(job_id) if job.status == JobStatus.QUEUED else None
    )
    return JobOut.from_record(job, queue_position=position)


@router.patch("/{job_id}", response_model=JobOut)
async def update_job(
    job_id: str,
    data: JobUpdateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: SqlJobStore = Depends(get_store),
    scheduler: Scheduler | None = Depends(get_scheduler),
):
    """Cancel a queued job or retry a failed one."""
    if data.action == "cancel":
        job = await store.cancel(job_id, user.user_id)
        return JobOut.from_record(job)

    job = await store.retry(job_id, user.user_id)
    if scheduler is not None:
        scheduler.wake()
    position = await store.queue_position(job_id)
    return JobOut.from_record(job, queue_position=position)
