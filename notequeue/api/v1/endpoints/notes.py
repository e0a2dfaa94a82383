"""
Notes API - generate notes inline through the bounded worker pool.

The request waits for the result. The work still goes through the job queue
(pinned to this process) so concurrent AI calls stay within
max_concurrent_jobs; callers that want a ticket instead use the jobs API.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from notequeue.api.v1.deps import get_facade, get_note_handlers, get_scheduler
from notequeue.api.v1.endpoints.utils.jobs import validate_input_data
from notequeue.api.v1.helpers.authentication import AuthenticatedUser, get_current_user
from notequeue.api.v1.helpers.responses import (
    error_response,
    service_unavailable_response,
)
from notequeue.core.facade import QueueFacade
from notequeue.core.handlers import NoteJobHandlers
from notequeue.core.scheduler import Scheduler
from notequeue.models.enums import JobType
from notequeue.models.pydantic_models.jobs import parse_job_input

logger = logging.getLogger(__name__)
router = APIRouter()


class NotesOut(BaseModel):
    content: str
    summary: str = ""
    quiz: list[dict[str, Any]] = Field(default_factory=list)
    partial_success: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


@router.post("/{job_type}", response_model=NotesOut)
async def generate_notes(
    job_type: JobType,
    input_data: dict[str, Any],
    user: AuthenticatedUser = Depends(get_current_user),
    facade: QueueFacade = Depends(get_facade),
    notes: NoteJobHandlers = Depends(get_note_handlers),
    scheduler: Scheduler | None = Depends(get_scheduler),
):
    """
    Generate notes and return them in the response.

    503 when this process runs no scheduler, 504 when the job does not finish
    within the facade timeout. Generation failures are reported after the
    job's retries are used up.
    """
    if scheduler is None or not scheduler.running:
        raise service_unavailable_response(
            "Inline note generation needs a scheduler in this process"
        )

    normalized = validate_input_data(job_type.value, input_data)
    payload = parse_job_input(job_type.value, normalized)

    async def work():
        return await notes.build_notes(payload)

    try:
        result = await facade.queue_request(
            user.user_id, job_type.value, work, input_data=normalized
        )
    except TimeoutError as e:
        logger.warning(f"Inline {job_type.value} request for {user.user_id} timed out")
        raise error_response(str(e), status_code=status.HTTP_504_GATEWAY_TIMEOUT)

    logger.info(f"Generated {job_type.value} notes inline for user {user.user_id}")
    return result
