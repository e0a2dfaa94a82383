"""Tests for QueueFacade.queue_request."""

import asyncio

import pytest

from notequeue.core.errors import JobCancelled
from notequeue.models.enums import JobStatus


async def _only_job(store, user_id):
    jobs, total = await store.list_jobs(user_id)
    assert total == 1
    return jobs[0]


async def _wait_for_job(store, user_id, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        jobs, _ = await store.list_jobs(user_id)
        if jobs:
            return jobs[0]
        await asyncio.sleep(0.02)
    raise AssertionError("job was never enqueued")


async def test_queue_request_returns_work_result(queue):
    await queue.scheduler.start()

    async def work():
        return {"notes": "generated"}

    result = await queue.facade.queue_request("user-1", "text_notes", work)

    assert result == {"notes": "generated"}
    job = await _only_job(queue.store, "user-1")
    assert job.status == JobStatus.COMPLETED
    assert job.pinned_to == queue.scheduler.instance_id
    assert queue.facade.pending_count == 0


async def test_priority_comes_from_subscription(queue, subscriptions):
    await queue.scheduler.start()
    subscriptions.set_tier("user-pro", "pro")

    async def work():
        return "ok"

    await queue.facade.queue_request("user-pro", "text_notes", work)
    await queue.facade.queue_request("user-free", "text_notes", work)
    await queue.facade.queue_request("user-hint", "text_notes", work, tier="student")

    assert (await _only_job(queue.store, "user-pro")).priority == "high"
    assert (await _only_job(queue.store, "user-free")).priority == "low"
    assert (await _only_job(queue.store, "user-hint")).priority == "normal"


async def test_failure_reraises_work_exception_after_retries(queue):
    await queue.scheduler.start()
    attempts = 0

    async def work():
        nonlocal attempts
        attempts += 1
        raise ValueError("provider rejected the prompt")

    with pytest.raises(ValueError, match="provider rejected the prompt"):
        await queue.facade.queue_request("user-1", "text_notes", work)

    job = await _only_job(queue.store, "user-1")
    assert job.status == JobStatus.FAILED
    assert job.retry_count == job.max_retries
    assert attempts == job.max_retries + 1


async def test_transient_failure_succeeds_on_retry(queue):
    await queue.scheduler.start()
    attempts = 0

    async def work():
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise ConnectionError("rate limited")
        return "second time lucky"

    result = await queue.facade.queue_request("user-1", "text_notes", work)

    assert result == "second time lucky"
    job = await _only_job(queue.store, "user-1")
    assert job.status == JobStatus.COMPLETED
    assert job.retry_count == 1


async def test_cancelled_job_raises_job_cancelled(queue):
    # no scheduler running, so the job stays queued until cancelled
    async def work():
        return "never"

    request = asyncio.create_task(
        queue.facade.queue_request("user-1", "text_notes", work)
    )
    job = await _wait_for_job(queue.store, "user-1")
    await queue.store.cancel(job.job_id, "user-1")

    with pytest.raises(JobCancelled):
        await asyncio.wait_for(request, timeout=2)
    assert queue.facade.pending_count == 0


async def test_timeout_cancels_queued_job(queue):
    async def work():
        return "never"

    with pytest.raises(TimeoutError):
        await queue.facade.queue_request(
            "user-1", "text_notes", work, timeout_seconds=0.2
        )

    job = await _only_job(queue.store, "user-1")
    assert job.status == JobStatus.CANCELLED
    assert queue.facade.pending_count == 0


class SlowEnqueueStore:
    """Delegates to the real store; enqueue returns only after a delay."""

    def __init__(self, store, delay=0.0, fail_with=None):
        self._store = store
        self.delay = delay
        self.fail_with = fail_with

    def __getattr__(self, name):
        return getattr(self._store, name)

    async def enqueue(self, *args, **kwargs):
        if self.fail_with is not None:
            raise self.fail_with
        job_id = await self._store.enqueue(*args, **kwargs)
        await asyncio.sleep(self.delay)
        return job_id


async def test_job_claimed_before_enqueue_returns_still_runs_work(queue):
    queue.facade.store = SlowEnqueueStore(queue.store, delay=0.3)
    await queue.scheduler.start()

    async def work():
        return "ok"

    result = await queue.facade.queue_request(
        "user-1", "text_notes", work, timeout_seconds=3
    )

    assert result == "ok"
    job = await _only_job(queue.store, "user-1")
    assert job.status == JobStatus.COMPLETED
    assert job.retry_count == 0


async def test_enqueue_failure_leaves_nothing_registered(queue):
    queue.facade.store = SlowEnqueueStore(
        queue.store, fail_with=ConnectionError("database unavailable")
    )

    async def work():
        return "never"

    with pytest.raises(ConnectionError, match="database unavailable"):
        await queue.facade.queue_request("user-1", "text_notes", work)

    assert queue.facade.pending_count == 0
    assert queue.scheduler._local_handlers == {}
