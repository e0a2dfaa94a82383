"""
Job cleanup - deletes finished jobs older than the retention window.

Runs daily via Celery Beat so the jobs and job_events tables don't grow
without bound. Queued and processing jobs are never touched.
"""

import asyncio
import logging

from celery import shared_task

from notequeue.config import settings
from notequeue.core.store import SqlJobStore
from notequeue.db.session import dispose_engine, get_session_local
from notequeue.tasks.task_lock import with_task_lock
from notequeue.utils import utc_now

logger = logging.getLogger(__name__)


async def _cleanup_old_jobs(older_than_days: int) -> dict:
    try:
        store = SqlJobStore(get_session_local())
        count = await store.cleanup_old_jobs(older_than_days=older_than_days)

        if count == 0:
            logger.info("Job cleanup: no jobs to delete")

        return {
            "deleted": count,
            "older_than_days": older_than_days,
            "ran_at": utc_now().isoformat(),
        }

    except Exception as exc:
        logger.error(f"Job cleanup failed: {exc}", exc_info=True)
        raise
    finally:
        # Each asyncio.run gets a fresh loop; pooled connections can't cross it
        await dispose_engine()


@shared_task(name="job_cleanup.cleanup_old_jobs")
@with_task_lock(lock_name="job_cleanup")
def cleanup_old_jobs(older_than_days: int | None = None) -> dict:
    """
    Celery task to delete completed, failed and cancelled jobs (and their
    events) that finished more than older_than_days ago.

    Args:
        older_than_days: Retention window. Defaults to settings.cleanup_older_than_days.

    Returns:
        Dict with the deleted count.
    """
    days = older_than_days if older_than_days is not None else settings.cleanup_older_than_days
    return asyncio.run(_cleanup_old_jobs(days))
