"""
Standardized response helpers for consistent API responses.
"""

from typing import Any
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from notequeue.core.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    JobCancelled,
    NotFound,
    QueueError,
)


class APIResponse(BaseModel):
    """Standard API response model"""

    success: bool
    message: str
    data: Any | None = None
    errors: list[str] | None = None


def error_response(
    message: str = "An error occurred",
    errors: list[str] | None = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> HTTPException:
    """Build an HTTPException carrying an APIResponse body; callers raise it."""
    response_data = APIResponse(success=False, message=message, errors=errors or [])
    return HTTPException(status_code=status_code, detail=response_data.model_dump())


def validation_error_response(
    errors: list[str], message: str = "Validation failed"
) -> HTTPException:
    return error_response(
        message=message, errors=errors, status_code=status.HTTP_400_BAD_REQUEST
    )


def unauthorized_response(message: str = "Authentication required") -> HTTPException:
    return error_response(message=message, status_code=status.HTTP_401_UNAUTHORIZED)


def service_unavailable_response(message: str = "Service unavailable") -> HTTPException:
    return error_response(
        message=message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE
    )


QUEUE_ERROR_STATUS = (
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (InvalidState, status.HTTP_400_BAD_REQUEST),
    (Conflict, status.HTTP_409_CONFLICT),
    (JobCancelled, status.HTTP_409_CONFLICT),
)


def status_for_queue_error(exc: QueueError) -> int:
    for exc_type, status_code in QUEUE_ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
    """Map store errors raised by endpoints onto HTTP status codes."""
    body = APIResponse(success=False, message=exc.message or str(exc), errors=[])
    return JSONResponse(
        status_code=status_for_queue_error(exc),
        content={"detail": body.model_dump()},
    )
