"""
Utility functions for the jobs endpoint.
"""

import json
import logging

from pydantic import ValidationError

from notequeue.api.v1.helpers.responses import validation_error_response
from notequeue.models.pydantic_models.jobs import JobEventRecord, parse_job_input

logger = logging.getLogger(__name__)


def validate_input_data(job_type: str, input_data: dict) -> dict:
    """
    Validate input_data against the payload schema for job_type.

    Returns:
        The normalized payload (defaults filled, derived fields set)

    Raises:
        HTTPException: 400 listing every validation problem
    """
    try:
        payload = parse_job_input(job_type, input_data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'input_data'}: {err['msg']}"
            for err in e.errors()
        ]
        raise validation_error_response(errors, message="Invalid input_data")
    return payload.model_dump(exclude={"job_type"})


def format_sse(event: JobEventRecord) -> str:
    data = json.dumps(event.model_dump(mode="json"))
    return f"id: {event.event_id}\nevent: job\ndata: {data}\n\n"


def parse_cursor(after: int | None, last_event_id: str | None) -> int:
    """Resume from ?after=, else the Last-Event-ID header sent on reconnect."""
    if after is not None:
        return max(0, after)
    if last_event_id:
        try:
            return max(0, int(last_event_id))
        except ValueError:
            logger.debug(f"Ignoring malformed Last-Event-ID: {last_event_id}")
    return 0
