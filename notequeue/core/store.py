"""
Job store - durable job rows with atomic state transitions.

Every mutation is a single conditional UPDATE ... WHERE status = ... RETURNING
(compare-and-swap on status). When nothing matches, the row is re-read only to
decide which error to raise. Each transition also appends a row to job_events
in the same transaction, which is what change-feed subscribers read.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import and_, case, delete, func, insert, or_, select, update
from sqlalchemy.orm import aliased

from notequeue.core.errors import (
    Conflict,
    ExhaustedRetries,
    Forbidden,
    InvalidState,
    NotFound,
)
from notequeue.core.notifier import JobEventNotifier
from notequeue.core.priority import (
    PRIORITY_RANK,
    normalize_priority,
    priority_rank_expr,
)
from notequeue.models.enums import (
    TERMINAL_STATUSES,
    JobEventType,
    JobStatus,
    JobType,
)
from notequeue.models.jobs import Job, JobEvent
from notequeue.models.pydantic_models.jobs import (
    JobEventRecord,
    JobRecord,
    JobStats,
)
from notequeue.utils import as_utc, clamp_progress, utc_now

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# pg_advisory_xact_lock key guarding job_events inserts
EVENT_ID_LOCK_KEY = 0x6E6F7465

_JOB_COLUMNS = tuple(Job.__table__.c)


class JobStore(Protocol):
    async def enqueue(
        self,
        user_id: str,
        job_type: str,
        input_data: Dict[str, Any],
        priority: str,
        estimated_duration_seconds: Optional[int] = None,
        max_retries: Optional[int] = None,
        pinned_to: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> str: ...

    async def claim_next(
        self, worker_id: str, instance_id: Optional[str] = None
    ) -> Optional[JobRecord]: ...

    async def update_progress(
        self, job_id: str, progress: int, worker_id: Optional[str] = None
    ) -> int: ...

    async def complete(
        self,
        job_id: str,
        output_data: Any,
        success: bool,
        error_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
        worker_id: Optional[str] = None,
    ) -> JobRecord: ...

    async def cancel(self, job_id: str, requesting_user_id: str) -> JobRecord: ...

    async def retry(
        self, job_id: str, requesting_user_id: Optional[str] = None
    ) -> JobRecord: ...

    async def get_job(self, job_id: str) -> JobRecord: ...

    async def list_jobs(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> Tuple[List[JobRecord], int]: ...

    async def queue_position(self, job_id: str) -> Optional[int]: ...

    async def get_stats(self, user_id: Optional[str] = None) -> JobStats: ...

    async def events_since(
        self, user_id: Optional[str], after_event_id: int = 0, limit: int = 100
    ) -> List[JobEventRecord]: ...

    async def latest_event_id(self, user_id: Optional[str] = None) -> int: ...

    async def cleanup_old_jobs(self, older_than_days: int = 30) -> int: ...


def _to_record(row) -> JobRecord:
    return JobRecord.model_validate(dict(row))


class SqlJobStore:
    """JobStore backed by SQLAlchemy async sessions.

    Works on PostgreSQL (asyncpg), where the claim uses FOR UPDATE SKIP LOCKED,
    and on SQLite (aiosqlite), where writers are serialized by the database.
    """

    def __init__(
        self,
        session_factory,
        notifier: Optional[JobEventNotifier] = None,
        default_max_retries: int = 3,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self.default_max_retries = default_max_retries

    def _notify(self, user_id: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(user_id)

    async def _serialize_event_ids(self, session) -> None:
        """Hold the event lock until commit so event ids commit in id order.

        Change-feed readers advance a cursor over event_id and must never see a
        later id before an earlier one. SQLite serializes writers already.
        """
        if session.get_bind().dialect.name == "postgresql":
            await session.execute(select(func.pg_advisory_xact_lock(EVENT_ID_LOCK_KEY)))

    async def _insert_event(
        self,
        session,
        job_id: str,
        user_id: str,
        event_type: JobEventType,
        status: JobStatus,
        progress: int,
    ) -> None:
        await self._serialize_event_ids(session)
        await session.execute(
            insert(JobEvent).values(
                job_id=job_id,
                user_id=user_id,
                event_type=event_type.value,
                status=status.value,
                progress=progress,
                created_at=utc_now(),
            )
        )

    async def _append_event(self, session, job: JobRecord, event_type: JobEventType):
        await self._insert_event(
            session, job.job_id, job.user_id, event_type, job.status, job.progress
        )

    async def _cas(self, session, stmt) -> Optional[JobRecord]:
        result = await session.execute(
            stmt.returning(*_JOB_COLUMNS).execution_options(synchronize_session=False)
        )
        row = result.mappings().first()
        return _to_record(row) if row is not None else None

    async def _load(self, session, job_id: str) -> Optional[JobRecord]:
        result = await session.execute(
            select(*_JOB_COLUMNS).where(Job.job_id == job_id)
        )
        row = result.mappings().first()
        return _to_record(row) if row is not None else None

    async def _require(self, session, job_id: str) -> JobRecord:
        job = await self._load(session, job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found", job_id=job_id)
        return job

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        user_id: str,
        job_type: str,
        input_data: Dict[str, Any],
        priority: str,
        estimated_duration_seconds: Optional[int] = None,
        max_retries: Optional[int] = None,
        pinned_to: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> str:
        if not user_id:
            raise ValueError("user_id is required")
        job_type = JobType(job_type).value
        priority = normalize_priority(priority).value
        if max_retries is None:
            max_retries = self.default_max_retries
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        job_id = job_id or str(uuid.uuid4())
        now = utc_now()

        async with self._session_factory() as session:
            session.add(
                Job(
                    job_id=job_id,
                    user_id=user_id,
                    job_type=job_type,
                    priority=priority,
                    status=JobStatus.QUEUED.value,
                    input_data=input_data or {},
                    progress=0,
                    retry_count=0,
                    max_retries=max_retries,
                    estimated_duration_seconds=estimated_duration_seconds,
                    pinned_to=pinned_to,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.flush()
            await self._insert_event(
                session, job_id, user_id, JobEventType.STATUS, JobStatus.QUEUED, 0
            )
            await session.commit()

        self._notify(user_id)
        logger.info(f"Enqueued job {job_id} ({job_type}, priority={priority})")
        return job_id

    async def claim_next(
        self, worker_id: str, instance_id: Optional[str] = None
    ) -> Optional[JobRecord]:
        """Atomically move the best queued job to processing for worker_id.

        Jobs pinned to a scheduler instance are only eligible for that instance.
        Returns None when nothing is eligible, including when a concurrent
        claimer took the candidate first.
        """
        queued = aliased(Job)
        eligible = (
            or_(queued.pinned_to.is_(None), queued.pinned_to == instance_id)
            if instance_id
            else queued.pinned_to.is_(None)
        )
        candidate = (
            select(queued.job_id)
            .where(queued.status == JobStatus.QUEUED.value, eligible)
            .order_by(
                priority_rank_expr(queued.priority).desc(),
                queued.created_at.asc(),
                queued.job_id.asc(),
            )
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        now = utc_now()
        stmt = (
            update(Job)
            .where(Job.job_id == candidate, Job.status == JobStatus.QUEUED.value)
            .values(
                status=JobStatus.PROCESSING.value,
                worker_id=worker_id,
                started_at=now,
                updated_at=now,
                progress=0,
            )
        )

        async with self._session_factory() as session:
            job = await self._cas(session, stmt)
            if job is None:
                await session.rollback()
                return None
            await self._append_event(session, job, JobEventType.STATUS)
            await session.commit()

        self._notify(job.user_id)
        logger.info(f"Worker {worker_id} claimed job {job.job_id} ({job.priority})")
        return job

    async def update_progress(
        self, job_id: str, progress: int, worker_id: Optional[str] = None
    ) -> int:
        """Record progress for a processing job and return the stored value.

        Values are clamped to 0-100 and never move the stored value backwards.
        """
        progress = clamp_progress(progress)
        conditions = [Job.job_id == job_id, Job.status == JobStatus.PROCESSING.value]
        if worker_id is not None:
            conditions.append(Job.worker_id == worker_id)

        stmt = (
            update(Job)
            .where(*conditions)
            .values(
                progress=case(
                    (Job.progress < progress, progress), else_=Job.progress
                ),
                updated_at=utc_now(),
            )
        )

        async with self._session_factory() as session:
            job = await self._cas(session, stmt)
            if job is None:
                current = await self._require(session, job_id)
                await session.rollback()
                if current.status != JobStatus.PROCESSING:
                    raise InvalidState(
                        f"Job {job_id} is {current.status.value}, not processing",
                        job_id=job_id,
                        status=current.status.value,
                    )
                raise Conflict(
                    f"Job {job_id} is held by worker {current.worker_id}",
                    job_id=job_id,
                )
            await self._append_event(session, job, JobEventType.PROGRESS)
            await session.commit()

        self._notify(job.user_id)
        return job.progress

    async def complete(
        self,
        job_id: str,
        output_data: Any,
        success: bool,
        error_message: Optional[str] = None,
        error_details: Optional[Dict[str, Any]] = None,
        worker_id: Optional[str] = None,
    ) -> JobRecord:
        async with self._session_factory() as session:
            current = await self._require(session, job_id)
            if current.status != JobStatus.PROCESSING:
                raise InvalidState(
                    f"Cannot complete job {job_id} in status {current.status.value}",
                    job_id=job_id,
                    status=current.status.value,
                )
            if worker_id is not None and current.worker_id != worker_id:
                raise Conflict(
                    f"Job {job_id} is held by worker {current.worker_id}",
                    job_id=job_id,
                )

            now = utc_now()
            started_at = as_utc(current.started_at) or now
            duration = max(0, int((now - started_at).total_seconds()))

            values: Dict[str, Any] = {
                "worker_id": None,
                "completed_at": now,
                "updated_at": now,
                "actual_duration_seconds": duration,
            }
            if success:
                values.update(
                    status=JobStatus.COMPLETED.value,
                    output_data=output_data,
                    error_message=None,
                    error_details=None,
                    progress=100,
                )
            else:
                values.update(
                    status=JobStatus.FAILED.value,
                    output_data=None,
                    error_message=error_message or "Job failed",
                    error_details=error_details,
                )

            stmt = (
                update(Job)
                .where(
                    Job.job_id == job_id,
                    Job.status == JobStatus.PROCESSING.value,
                    Job.worker_id == current.worker_id,
                )
                .values(**values)
            )
            job = await self._cas(session, stmt)
            if job is None:
                await session.rollback()
                raise Conflict(
                    f"Job {job_id} changed while completing", job_id=job_id
                )
            await self._append_event(session, job, JobEventType.STATUS)
            await session.commit()

        self._notify(job.user_id)
        if success:
            logger.info(f"Job {job_id} completed in {job.actual_duration_seconds}s")
        else:
            logger.info(
                f"Job {job_id} failed (attempt {job.retry_count + 1}/{job.max_retries + 1}): {job.error_message}"
            )
        return job

    async def cancel(self, job_id: str, requesting_user_id: str) -> JobRecord:
        """Cancel a queued job. Claimed jobs cannot be cancelled."""
        now = utc_now()
        stmt = (
            update(Job)
            .where(
                Job.job_id == job_id,
                Job.user_id == requesting_user_id,
                Job.status == JobStatus.QUEUED.value,
            )
            .values(
                status=JobStatus.CANCELLED.value,
                worker_id=None,
                completed_at=now,
                updated_at=now,
            )
        )
        async with self._session_factory() as session:
            job = await self._cas(session, stmt)
            if job is None:
                current = await self._require(session, job_id)
                await session.rollback()
                if current.user_id != requesting_user_id:
                    raise Forbidden(
                        f"User {requesting_user_id} does not own job {job_id}",
                        job_id=job_id,
                    )
                raise InvalidState(
                    f"Cannot cancel job {job_id} in status {current.status.value}",
                    job_id=job_id,
                    status=current.status.value,
                )
            await self._append_event(session, job, JobEventType.STATUS)
            await session.commit()

        self._notify(job.user_id)
        logger.info(f"Job {job_id} cancelled by {requesting_user_id}")
        return job

    async def retry(
        self, job_id: str, requesting_user_id: Optional[str] = None
    ) -> JobRecord:
        """Move a failed job back to queued.

        requesting_user_id=None is the scheduler's own retry and skips the
        ownership check. The retry bound applies either way.
        """
        conditions = [
            Job.job_id == job_id,
            Job.status == JobStatus.FAILED.value,
            Job.retry_count < Job.max_retries,
        ]
        if requesting_user_id is not None:
            conditions.append(Job.user_id == requesting_user_id)

        stmt = (
            update(Job)
            .where(*conditions)
            .values(
                status=JobStatus.QUEUED.value,
                retry_count=Job.retry_count + 1,
                worker_id=None,
                error_message=None,
                error_details=None,
                output_data=None,
                progress=0,
                started_at=None,
                completed_at=None,
                actual_duration_seconds=None,
                updated_at=utc_now(),
            )
        )
        async with self._session_factory() as session:
            job = await self._cas(session, stmt)
            if job is None:
                current = await self._require(session, job_id)
                await session.rollback()
                if (
                    requesting_user_id is not None
                    and current.user_id != requesting_user_id
                ):
                    raise Forbidden(
                        f"User {requesting_user_id} does not own job {job_id}",
                        job_id=job_id,
                    )
                if current.status != JobStatus.FAILED:
                    raise InvalidState(
                        f"Cannot retry job {job_id} in status {current.status.value}",
                        job_id=job_id,
                        status=current.status.value,
                    )
                raise ExhaustedRetries(
                    f"Job {job_id} exhausted its {current.max_retries} retries",
                    job_id=job_id,
                    status=current.status.value,
                )
            await self._append_event(session, job, JobEventType.STATUS)
            await session.commit()

        self._notify(job.user_id)
        logger.info(
            f"Job {job_id} requeued (retry {job.retry_count}/{job.max_retries})"
        )
        return job

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> JobRecord:
        async with self._session_factory() as session:
            return await self._require(session, job_id)

    async def list_jobs(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> Tuple[List[JobRecord], int]:
        page = max(1, int(page))
        limit = max(1, min(MAX_PAGE_SIZE, int(limit)))

        filters = [Job.user_id == user_id]
        if status:
            filters.append(Job.status == JobStatus(status).value)

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Job).where(and_(*filters))
            )
            result = await session.execute(
                select(*_JOB_COLUMNS)
                .where(and_(*filters))
                .order_by(Job.created_at.desc(), Job.job_id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            jobs = [_to_record(row) for row in result.mappings().all()]

        return jobs, int(total or 0)

    async def queue_position(self, job_id: str) -> Optional[int]:
        """1-indexed rank among queued jobs in claim order; None if not queued."""
        async with self._session_factory() as session:
            job = await self._require(session, job_id)
            if job.status != JobStatus.QUEUED:
                return None

            rank = PRIORITY_RANK[job.priority]
            rank_expr = priority_rank_expr(Job.priority)
            ahead = await session.scalar(
                select(func.count())
                .select_from(Job)
                .where(
                    Job.status == JobStatus.QUEUED.value,
                    or_(
                        rank_expr > rank,
                        and_(rank_expr == rank, Job.created_at < job.created_at),
                        and_(
                            rank_expr == rank,
                            Job.created_at == job.created_at,
                            Job.job_id < job.job_id,
                        ),
                    ),
                )
            )
        return int(ahead or 0) + 1

    async def get_stats(self, user_id: Optional[str] = None) -> JobStats:
        counts = {status.value: 0 for status in JobStatus}
        scope = [Job.user_id == user_id] if user_id else []

        async with self._session_factory() as session:
            result = await session.execute(
                select(Job.status, func.count())
                .where(*scope)
                .group_by(Job.status)
            )
            for status, count in result.all():
                counts[status] = int(count)

            avg_duration = await session.scalar(
                select(func.avg(Job.actual_duration_seconds)).where(
                    Job.status == JobStatus.COMPLETED.value,
                    Job.actual_duration_seconds.isnot(None),
                    *scope,
                )
            )

        return JobStats(
            counts_by_status=counts,
            total_jobs=sum(counts.values()),
            avg_duration_seconds=round(float(avg_duration or 0.0), 2),
        )

    async def events_since(
        self, user_id: Optional[str], after_event_id: int = 0, limit: int = 100
    ) -> List[JobEventRecord]:
        stmt = select(JobEvent).where(JobEvent.event_id > after_event_id)
        if user_id:
            stmt = stmt.where(JobEvent.user_id == user_id)
        stmt = stmt.order_by(JobEvent.event_id.asc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [JobEventRecord.model_validate(e) for e in result.scalars().all()]

    async def latest_event_id(self, user_id: Optional[str] = None) -> int:
        stmt = select(func.max(JobEvent.event_id))
        if user_id:
            stmt = stmt.where(JobEvent.user_id == user_id)
        async with self._session_factory() as session:
            return int(await session.scalar(stmt) or 0)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_old_jobs(self, older_than_days: int = 30) -> int:
        """Delete terminal jobs (and their events) finished before the cutoff."""
        cutoff = utc_now() - timedelta(days=older_than_days)
        expired = and_(
            Job.status.in_(TERMINAL_STATUSES),
            Job.completed_at.isnot(None),
            Job.completed_at < cutoff,
        )

        async with self._session_factory() as session:
            await session.execute(
                delete(JobEvent)
                .where(JobEvent.job_id.in_(select(Job.job_id).where(expired)))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                delete(Job)
                .where(expired)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            count = result.rowcount or 0

        if count:
            logger.info(
                f"Deleted {count} terminal jobs older than {older_than_days} days"
            )
        return count
