"""
Router assembly for the v1 API.

Job and notes endpoints authenticate per route (bearer JWT); the worker
status endpoint is operational and sits behind the same check.
"""

from fastapi import APIRouter, Depends

from notequeue.api.v1.helpers.authentication import get_current_user
from notequeue.api.v1.endpoints import jobs, notes, worker

api_router = APIRouter()
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(notes.router, prefix="/notes", tags=["notes"])
api_router.include_router(
    worker.router,
    prefix="/worker",
    tags=["worker"],
    dependencies=[Depends(get_current_user)],
)
