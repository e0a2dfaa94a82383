"""
Worker API - status of the scheduler running in this process.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from notequeue.api.v1.deps import get_scheduler
from notequeue.core.scheduler import Scheduler

router = APIRouter()


class WorkerStatusOut(BaseModel):
    running: bool
    worker_id: str | None = None
    instance_id: str | None = None
    active_jobs: list[str] = []
    active_count: int = 0
    max_concurrent_jobs: int = 0
    load_percentage: float = 0.0
    poll_interval_seconds: float | None = None


@router.get("/", response_model=WorkerStatusOut)
async def worker_status(scheduler: Scheduler | None = Depends(get_scheduler)):
    if scheduler is None:
        return WorkerStatusOut(running=False)
    return WorkerStatusOut(**scheduler.status())
