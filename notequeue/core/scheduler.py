"""
Scheduler - bounded worker pool over the job store.

The loop claims jobs while a slot is free and runs each one as its own task.
The store is never held across a handler call: the only store operations are
the claim, progress updates and the final complete. When the queue is empty
the loop sleeps for poll_interval or until wake() is called.
"""

import asyncio
import logging
import os
import socket
import traceback
import uuid
from typing import Any, Callable, Dict, List, Optional

from opentelemetry import trace
from pydantic_core import to_jsonable_python

from notequeue.core.errors import Conflict, HandlerFailure, InvalidState
from notequeue.core.handlers import HandlerRegistry, JobHandler
from notequeue.core.store import JobStore
from notequeue.models.pydantic_models.jobs import JobRecord

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("notequeue.scheduler")

# listener(job, final, exc): job is the stored row after complete/retry
OutcomeListener = Callable[[JobRecord, bool, Optional[BaseException]], Any]

TRACEBACK_LIMIT = 4000


def default_instance_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


def error_details_for(exc: BaseException) -> Dict[str, Any]:
    tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    details: Dict[str, Any] = {
        "type": type(exc).__name__,
        "traceback": tb[-TRACEBACK_LIMIT:],
    }
    if exc.__cause__ is not None:
        details["cause"] = f"{type(exc.__cause__).__name__}: {exc.__cause__}"
    return details


class Scheduler:
    def __init__(
        self,
        store: JobStore,
        handlers: HandlerRegistry,
        max_concurrent_jobs: int = 3,
        poll_interval: float = 5.0,
        worker_id: Optional[str] = None,
        instance_id: Optional[str] = None,
        auto_retry: bool = True,
    ):
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        self.store = store
        self.handlers = handlers
        self.max_concurrent_jobs = max_concurrent_jobs
        self.poll_interval = poll_interval
        self.instance_id = instance_id or default_instance_id()
        self.worker_id = worker_id or self.instance_id
        self.auto_retry = auto_retry

        self._slots = asyncio.Semaphore(max_concurrent_jobs)
        self._wake = asyncio.Event()
        self._active: Dict[str, asyncio.Task] = {}
        self._local_handlers: Dict[str, JobHandler] = {}
        self._listeners: List[OutcomeListener] = []
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def register_local(self, job_id: str, handler: JobHandler) -> None:
        """Run handler for job_id instead of the job type's handler.

        Only meaningful for jobs pinned to this instance.
        """
        self._local_handlers[job_id] = handler

    def unregister_local(self, job_id: str) -> None:
        self._local_handlers.pop(job_id, None)

    def add_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: OutcomeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def wake(self) -> None:
        self._wake.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._run_loop(), name="notequeue-scheduler")
        logger.info(
            f"Scheduler {self.worker_id} started (max_concurrent_jobs={self.max_concurrent_jobs}, poll_interval={self.poll_interval}s)"
        )

    async def stop(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        """Stop claiming. With drain, wait for in-flight jobs; otherwise cancel them."""
        if not self._running:
            return
        self._running = False
        self._wake.set()

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        tasks = list(self._active.values())
        if tasks:
            if not drain:
                for task in tasks:
                    task.cancel()
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)

        logger.info(f"Scheduler {self.worker_id} stopped")

    def status(self) -> Dict[str, Any]:
        active = len(self._active)
        return {
            "running": self._running,
            "worker_id": self.worker_id,
            "instance_id": self.instance_id,
            "active_jobs": sorted(self._active),
            "active_count": active,
            "max_concurrent_jobs": self.max_concurrent_jobs,
            "load_percentage": round(active / self.max_concurrent_jobs * 100, 1),
            "poll_interval_seconds": self.poll_interval,
        }

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run_loop(self) -> None:
        while self._running:
            await self._slots.acquire()
            # wakes that arrive while the claim is in flight must survive it
            self._wake.clear()
            try:
                job = await self.store.claim_next(self.worker_id, self.instance_id)
            except asyncio.CancelledError:
                self._slots.release()
                raise
            except Exception as e:
                self._slots.release()
                logger.error(f"Claiming next job failed: {e}", exc_info=True)
                await self._idle()
                continue

            if job is None:
                self._slots.release()
                await self._idle()
                continue

            self._spawn(job)

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    def _spawn(self, job: JobRecord) -> asyncio.Task:
        task = asyncio.create_task(self._execute(job), name=f"notequeue-job-{job.job_id}")
        self._active[job.job_id] = task
        return task

    async def _execute(self, job: JobRecord) -> None:
        try:
            await self.process(job)
        except Exception as e:
            logger.error(f"Unexpected error processing job {job.job_id}: {e}", exc_info=True)
        finally:
            self._active.pop(job.job_id, None)
            self._slots.release()
            # a freed slot may have been all that blocked pending work
            self._wake.set()

    async def run_once(self) -> Optional[JobRecord]:
        """Claim and process a single job inline. Returns the claimed job, if any."""
        job = await self.store.claim_next(self.worker_id, self.instance_id)
        if job is None:
            return None
        await self.process(job)
        return job

    # ------------------------------------------------------------------
    # One job
    # ------------------------------------------------------------------

    def _resolve_handler(self, job: JobRecord) -> Optional[JobHandler]:
        handler = self._local_handlers.get(job.job_id)
        if handler is not None or job.pinned_to:
            return handler
        return self.handlers.get(job.job_type)

    async def process(self, job: JobRecord) -> Optional[JobRecord]:
        """Run the claimed job's handler and record the outcome."""
        handler = self._resolve_handler(job)
        retryable = True

        async def report_progress(progress: int) -> None:
            try:
                await self.store.update_progress(job.job_id, progress, self.worker_id)
            except (Conflict, InvalidState) as e:
                logger.warning(f"Progress update for job {job.job_id} rejected: {e}")

        with tracer.start_as_current_span("notequeue.job") as span:
            span.set_attribute("job_id", job.job_id)
            span.set_attribute("job_type", job.job_type)
            span.set_attribute("priority", job.priority)
            span.set_attribute("retry_count", job.retry_count)
            span.set_attribute("worker_id", self.worker_id)

            output = None
            exc: Optional[BaseException] = None
            try:
                if handler is None:
                    retryable = False
                    if job.pinned_to:
                        raise HandlerFailure(
                            f"No work function registered for job {job.job_id}", job.job_id
                        )
                    raise HandlerFailure(f"Unknown job type: {job.job_type}", job.job_id)
                output = await handler(job, report_progress)
            except asyncio.CancelledError:
                await self._complete(
                    job,
                    None,
                    success=False,
                    error_message="Worker stopped before the job finished",
                    error_details={"type": "CancelledError"},
                )
                raise
            except Exception as e:
                exc = e
                span.record_exception(e)
                logger.warning(f"Job {job.job_id} attempt failed: {e}")

            if exc is None:
                try:
                    stored_output = to_jsonable_python(output, fallback=str)
                except Exception as e:
                    exc = e
                    logger.warning(f"Job {job.job_id} output is not serializable: {e}")

            if exc is None:
                span.set_attribute("success", True)
                finished = await self._complete(job, stored_output, success=True)
            else:
                span.set_attribute("success", False)
                finished = await self._complete(
                    job,
                    None,
                    success=False,
                    error_message=str(exc) or type(exc).__name__,
                    error_details=error_details_for(exc),
                )

        if finished is None:
            return None

        final = True
        if exc is not None and retryable and self.auto_retry and finished.can_retry:
            try:
                finished = await self.store.retry(job.job_id, None)
                final = False
                self.wake()
            except InvalidState as e:
                logger.debug(f"Automatic retry of job {job.job_id} skipped: {e}")

        self._notify_listeners(finished, final, exc)
        return finished

    async def _complete(self, job: JobRecord, output, success: bool, **kwargs) -> Optional[JobRecord]:
        try:
            return await self.store.complete(
                job.job_id, output, success, worker_id=self.worker_id, **kwargs
            )
        except Conflict as e:
            logger.debug(f"Lost job {job.job_id} before completing: {e}")
        except InvalidState as e:
            logger.warning(f"Job {job.job_id} could not be completed: {e}")
        return None

    def _notify_listeners(
        self, job: JobRecord, final: bool, exc: Optional[BaseException]
    ) -> None:
        for listener in list(self._listeners):
            try:
                listener(job, final, exc)
            except Exception as e:
                logger.error(f"Job outcome listener failed: {e}", exc_info=True)
