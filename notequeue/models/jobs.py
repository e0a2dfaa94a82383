"""
Job model - durable queue rows plus the append-only change feed.
"""

import uuid
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB

from notequeue.db.base import Base
from notequeue.models.enums import JobStatus

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Job(Base):
    __tablename__ = "jobs"

    job_id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    user_id = Column(String, nullable=False, index=True)

    # text_notes | file_notes | video_notes | youtube_notes
    job_type = Column(String, nullable=False)

    # low | normal | high | urgent, fixed at enqueue time
    priority = Column(String, nullable=False)

    # queued | processing | completed | failed | cancelled
    status = Column(String, nullable=False, default=JobStatus.QUEUED.value)

    input_data = Column(JSONType, nullable=False, default=dict)
    output_data = Column(JSONType, nullable=True)

    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)

    progress = Column(Integer, nullable=False, default=0)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    estimated_duration_seconds = Column(Integer, nullable=True)
    actual_duration_seconds = Column(Integer, nullable=True)

    # Holder of the claim; only set while processing
    worker_id = Column(String, nullable=True)

    # Scheduler instance that must run this job (facade jobs hold an in-process closure)
    pinned_to = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_jobs_status_created_at", "status", "created_at"),)


class JobEvent(Base):
    __tablename__ = "job_events"

    # Monotonic cursor for change-feed subscribers
    event_id = Column(Integer, primary_key=True, autoincrement=True)

    job_id = Column(
        String(36),
        ForeignKey("jobs.job_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String, nullable=False)

    # status | progress
    event_type = Column(String, nullable=False)
    status = Column(String, nullable=False)
    progress = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_job_events_user_id_event_id", "user_id", "event_id"),)
