"""
Client facade - enqueue work and await its result inline.

queue_request puts the caller's work function behind the bounded worker pool
and waits for the job to finish. The caller gets no async ticket out of this;
the queue only serializes concurrent AI calls. The wait is a future resolved
by a scheduler listener (completion) or by the change feed (cancellation),
bounded by an optional timeout.

The work function lives in this process, so the job is pinned to the local
scheduler instance and no other worker can claim it.
"""

import asyncio
import logging
import uuid
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from notequeue.core.errors import HandlerFailure, InvalidState, JobCancelled
from notequeue.core.notifier import JobEventNotifier
from notequeue.core.priority import priority_for_tier
from notequeue.core.scheduler import Scheduler
from notequeue.core.store import JobStore
from notequeue.core.subscriptions import SubscriptionProvider
from notequeue.models.enums import JobStatus
from notequeue.models.pydantic_models.jobs import JobRecord

logger = logging.getLogger(__name__)

WorkFn = Callable[[], Awaitable[Any]]


@dataclass
class _PendingRequest:
    future: asyncio.Future
    result: Any = None
    last_error: Optional[BaseException] = None
    attempts: int = 0


class QueueFacade:
    def __init__(
        self,
        store: JobStore,
        scheduler: Scheduler,
        subscriptions: SubscriptionProvider,
        timeout_seconds: Optional[float] = None,
        notifier: Optional[JobEventNotifier] = None,
        poll_interval: float = 5.0,
    ):
        self.store = store
        self.scheduler = scheduler
        self.subscriptions = subscriptions
        self.timeout_seconds = timeout_seconds
        self.notifier = notifier
        self.poll_interval = poll_interval
        self._pending: Dict[str, _PendingRequest] = {}
        scheduler.add_listener(self._on_outcome)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def queue_request(
        self,
        user_id: str,
        job_type: str,
        work_fn: WorkFn,
        tier: Optional[str] = None,
        input_data: Optional[Dict[str, Any]] = None,
        estimated_duration_seconds: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> Any:
        """Enqueue work_fn as a job and return its result once the job completes.

        Raises the exception work_fn raised on its last attempt when the job
        ends failed, JobCancelled when it was cancelled while queued, and
        TimeoutError when the wait exceeds the timeout.
        """
        if tier is None:
            tier = await self.subscriptions.get_subscription_plan(user_id)
        priority = priority_for_tier(tier)

        pending = _PendingRequest(future=asyncio.get_running_loop().create_future())

        async def run_work(job: JobRecord, report_progress) -> Any:
            pending.attempts += 1
            try:
                pending.result = await work_fn()
            except Exception as e:
                pending.last_error = e
                raise
            pending.last_error = None
            return pending.result

        # The scheduler may claim the job as soon as the row commits
        job_id = str(uuid.uuid4())
        self._pending[job_id] = pending
        self.scheduler.register_local(job_id, run_work)
        try:
            cursor = await self.store.latest_event_id(user_id)
            await self.store.enqueue(
                user_id,
                job_type,
                input_data or {},
                priority.value,
                estimated_duration_seconds=estimated_duration_seconds,
                pinned_to=self.scheduler.instance_id,
                job_id=job_id,
            )
        except BaseException:
            self._pending.pop(job_id, None)
            self.scheduler.unregister_local(job_id)
            raise
        self.scheduler.wake()
        logger.info(f"Facade queued job {job_id} for user {user_id} ({priority.value})")

        watcher = asyncio.create_task(
            self._watch_for_cancel(job_id, user_id, cursor, pending)
        )
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        try:
            if timeout:
                job = await asyncio.wait_for(asyncio.shield(pending.future), timeout)
            else:
                job = await pending.future
        except asyncio.TimeoutError:
            await self._abandon(job_id, user_id)
            raise TimeoutError(f"Job {job_id} did not finish within {timeout}s")
        finally:
            watcher.cancel()
            self._pending.pop(job_id, None)
            self.scheduler.unregister_local(job_id)

        return self._resolve(job, pending)

    def _resolve(self, job: JobRecord, pending: _PendingRequest) -> Any:
        if job.status == JobStatus.COMPLETED:
            return pending.result
        if job.status == JobStatus.CANCELLED:
            raise JobCancelled(f"Job {job.job_id} was cancelled", job.job_id)
        if pending.last_error is not None:
            raise pending.last_error
        raise HandlerFailure(job.error_message or f"Job {job.job_id} failed", job.job_id)

    def _on_outcome(self, job: JobRecord, final: bool, exc: Optional[BaseException]) -> None:
        pending = self._pending.get(job.job_id)
        if pending is None or not final or pending.future.done():
            return
        pending.future.set_result(job)

    async def _watch_for_cancel(
        self, job_id: str, user_id: str, cursor: int, pending: _PendingRequest
    ) -> None:
        """Resolve the wait when the change feed reports the job cancelled.

        Cancellation happens through the store (API, another process), so the
        scheduler never sees it.
        """
        try:
            while not pending.future.done():
                listen = self.notifier.listen(user_id) if self.notifier else nullcontext()
                with listen as wakeup:
                    events = await self.store.events_since(user_id, cursor)
                    for event in events:
                        cursor = event.event_id
                        if event.job_id == job_id and event.status == JobStatus.CANCELLED:
                            job = await self.store.get_job(job_id)
                            if not pending.future.done():
                                pending.future.set_result(job)
                            return
                    if events:
                        continue
                    if wakeup is None:
                        await asyncio.sleep(self.poll_interval)
                    else:
                        try:
                            await asyncio.wait_for(wakeup.wait(), self.poll_interval)
                        except asyncio.TimeoutError:
                            pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Stopped watching job {job_id} for cancellation: {e}")

    async def _abandon(self, job_id: str, user_id: str) -> None:
        try:
            await self.store.cancel(job_id, user_id)
            logger.info(f"Facade timed out waiting for job {job_id}; cancelled it")
        except InvalidState:
            logger.warning(
                f"Facade timed out waiting for job {job_id}; it is already running"
            )
