"""
Exceptions raised by the job queue core.

Store errors (NotFound, Forbidden, InvalidState, Conflict) propagate to the
caller of the mutating operation. HandlerFailure and its subclasses are raised
by job work and end up recorded on the job row instead.
"""


class QueueError(Exception):
    """Base class for job queue errors."""

    def __init__(self, message: str = "", job_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class NotFound(QueueError):
    pass


class Forbidden(QueueError):
    pass


class InvalidState(QueueError):
    """The requested transition is not legal from the job's current status."""

    def __init__(
        self, message: str = "", job_id: str | None = None, status: str | None = None
    ):
        super().__init__(message, job_id)
        self.status = status


class ExhaustedRetries(InvalidState):
    pass


class Conflict(QueueError):
    """Another worker won the race for this job."""


class HandlerFailure(QueueError):
    pass


class JobCancelled(QueueError):
    pass


class NoteGenerationError(HandlerFailure):
    pass


class SourceError(HandlerFailure):
    pass
