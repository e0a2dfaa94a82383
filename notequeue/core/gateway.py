"""
Status gateway - read-only projection of the job store plus a change feed.

subscribe() replays job_events after a cursor and then follows new ones,
waking on the in-process notifier or every poll_interval. Events are durable
and written with the transition they describe, so a subscriber that resumes
from its last cursor never misses a transition; replaying an older cursor
repeats events.
"""

import asyncio
import logging
import math
from contextlib import nullcontext
from typing import AsyncIterator, List, Optional, Tuple

from notequeue.core.errors import Forbidden
from notequeue.core.notifier import JobEventNotifier
from notequeue.core.store import JobStore
from notequeue.models.enums import JobStatus
from notequeue.models.pydantic_models.jobs import JobEventRecord, JobRecord, JobStats

logger = logging.getLogger(__name__)


def estimate_wait_seconds(
    jobs_ahead: int, avg_duration_seconds: float, max_concurrent_jobs: int
) -> int:
    if jobs_ahead <= 0:
        return 0
    return int(math.ceil(jobs_ahead * avg_duration_seconds / max(1, max_concurrent_jobs)))


class StatusGateway:
    def __init__(
        self,
        store: JobStore,
        notifier: Optional[JobEventNotifier] = None,
        poll_interval: float = 5.0,
        max_concurrent_jobs: int = 3,
        default_job_duration_seconds: int = 90,
    ):
        self.store = store
        self.notifier = notifier
        self.poll_interval = poll_interval
        self.max_concurrent_jobs = max_concurrent_jobs
        self.default_job_duration_seconds = default_job_duration_seconds

    async def list_jobs(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> Tuple[List[JobRecord], int]:
        return await self.store.list_jobs(user_id, page=page, limit=limit, status=status)

    async def get_job(self, job_id: str, requesting_user_id: str) -> JobRecord:
        job = await self.store.get_job(job_id)
        if job.user_id != requesting_user_id:
            raise Forbidden(
                f"User {requesting_user_id} does not own job {job_id}", job_id=job_id
            )
        return job

    async def queue_position(self, job_id: str) -> Optional[int]:
        return await self.store.queue_position(job_id)

    def _average_duration(self, stats: JobStats) -> float:
        return stats.avg_duration_seconds or float(self.default_job_duration_seconds)

    async def get_stats(self, user_id: Optional[str] = None) -> JobStats:
        """Counts for user_id (or everyone) plus the wait a new job would see.

        The wait estimate always uses the global queue since every user's job
        competes for the same workers.
        """
        stats = await self.store.get_stats(user_id)
        global_stats = stats if user_id is None else await self.store.get_stats(None)

        queued = global_stats.counts_by_status.get(JobStatus.QUEUED.value, 0)
        stats.estimated_wait_time_seconds = estimate_wait_seconds(
            queued, self._average_duration(global_stats), self.max_concurrent_jobs
        )
        return stats

    async def estimate_wait_for(self, job_id: str) -> Optional[int]:
        position = await self.store.queue_position(job_id)
        if position is None:
            return None
        stats = await self.store.get_stats(None)
        return estimate_wait_seconds(
            position - 1, self._average_duration(stats), self.max_concurrent_jobs
        )

    async def subscribe(
        self, user_id: Optional[str], after_event_id: int = 0, batch_size: int = 100
    ) -> AsyncIterator[JobEventRecord]:
        """Yield job events for user_id (None for all users) after the cursor, forever."""
        cursor = after_event_id
        while True:
            listen = self.notifier.listen(user_id) if self.notifier else nullcontext()
            with listen as wakeup:
                events = await self.store.events_since(user_id, cursor, limit=batch_size)
                if not events:
                    await self._wait(wakeup)
                    continue
            for event in events:
                cursor = event.event_id
                yield event

    async def _wait(self, wakeup: Optional[asyncio.Event]) -> None:
        if wakeup is None:
            await asyncio.sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(wakeup.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
