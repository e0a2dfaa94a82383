"""
Pydantic models for jobs: typed input payloads keyed by job_type, and the
read-side records handed out by the job store.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from notequeue.models.enums import JobStatus
from notequeue.utils import as_utc, extract_youtube_video_id


class NotesOptions(BaseModel):
    language: str = "en"
    generate_quiz: bool = False


class TextNotesOptions(NotesOptions):
    custom_prompt: Optional[str] = None


class YouTubeNotesOptions(NotesOptions):
    preferred_languages: List[str] = Field(
        default_factory=lambda: ["en", "pl", "es", "fr", "de"]
    )


MAX_TEXT_LENGTH = 50_000


class TextNotesInput(BaseModel):
    job_type: Literal["text_notes"] = "text_notes"
    content: str
    options: TextNotesOptions = Field(default_factory=TextNotesOptions)

    @field_validator("content")
    @classmethod
    def _content_length(cls, value: str) -> str:
        if len(value.strip()) < 10:
            raise ValueError("Content must be at least 10 characters long")
        if len(value) > MAX_TEXT_LENGTH:
            raise ValueError(
                f"Text exceeds maximum length of {MAX_TEXT_LENGTH} characters"
            )
        return value


class FileNotesInput(BaseModel):
    job_type: Literal["file_notes"] = "file_notes"
    file_url: str
    file_name: str
    file_type: str
    options: NotesOptions = Field(default_factory=NotesOptions)


class VideoNotesInput(BaseModel):
    job_type: Literal["video_notes"] = "video_notes"
    video_url: str
    options: NotesOptions = Field(default_factory=NotesOptions)


class YouTubeNotesInput(BaseModel):
    job_type: Literal["youtube_notes"] = "youtube_notes"
    youtube_url: str
    video_id: Optional[str] = None
    options: YouTubeNotesOptions = Field(default_factory=YouTubeNotesOptions)

    @model_validator(mode="after")
    def _resolve_video_id(self) -> "YouTubeNotesInput":
        if not self.video_id:
            self.video_id = extract_youtube_video_id(self.youtube_url)
        if not self.video_id:
            raise ValueError("youtube_notes job requires a valid YouTube URL or video_id")
        return self


JobInput = Annotated[
    Union[TextNotesInput, FileNotesInput, VideoNotesInput, YouTubeNotesInput],
    Field(discriminator="job_type"),
]

_job_input_adapter: TypeAdapter = TypeAdapter(JobInput)


def parse_job_input(job_type: str, input_data: Dict[str, Any]):
    """Validate a raw payload against the variant selected by job_type.

    Raises pydantic.ValidationError on malformed input.
    """
    return _job_input_adapter.validate_python({**(input_data or {}), "job_type": job_type})


class JobRecord(BaseModel):
    """Read-only snapshot of a job row."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    user_id: str
    job_type: str
    priority: str
    status: JobStatus
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Optional[Any] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    progress: int = 0
    retry_count: int = 0
    max_retries: int = 0
    estimated_duration_seconds: Optional[int] = None
    actual_duration_seconds: Optional[int] = None
    worker_id: Optional[str] = None
    pinned_to: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "started_at", "completed_at")
    @classmethod
    def _normalize_tz(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def can_retry(self) -> bool:
        return self.status == JobStatus.FAILED and self.retry_count < self.max_retries


class JobEventRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: int
    job_id: str
    user_id: str
    event_type: str
    status: JobStatus
    progress: int
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return as_utc(value)


class JobStats(BaseModel):
    counts_by_status: Dict[str, int]
    total_jobs: int
    avg_duration_seconds: float
    estimated_wait_time_seconds: Optional[int] = None
