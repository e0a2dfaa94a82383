"""
Enumerations for the job queue.
"""

from enum import Enum


class JobType(str, Enum):
    """Kinds of note generation work; selects the handler that runs."""

    TEXT_NOTES = "text_notes"
    FILE_NOTES = "file_notes"
    VIDEO_NOTES = "video_notes"
    YOUTUBE_NOTES = "youtube_notes"


class JobStatus(str, Enum):
    """Job lifecycle states"""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobPriority(str, Enum):
    """Queue ordering label derived from the subscription tier at enqueue time"""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class SubscriptionTier(str, Enum):
    FREE = "free"
    STUDENT = "student"
    PRO = "pro"


class JobEventType(str, Enum):
    STATUS = "status"
    PROGRESS = "progress"


TERMINAL_STATUSES = (
    JobStatus.COMPLETED.value,
    JobStatus.FAILED.value,
    JobStatus.CANCELLED.value,
)
