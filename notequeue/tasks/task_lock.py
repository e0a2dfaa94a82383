"""
Valkey locks that keep periodic Celery tasks from overlapping.
"""

import logging
from contextlib import contextmanager
from functools import wraps
from typing import Any
from collections.abc import Callable
from valkey import Valkey

from notequeue.config import settings

logger = logging.getLogger(__name__)

# Released on completion; the timeout only matters if a worker dies holding it
DEFAULT_LOCK_TIMEOUT_SECONDS = 60 * 60


def get_valkey_client() -> Valkey:
    return Valkey(
        host=settings.valkey_host,
        port=settings.valkey_port,
        db=settings.valkey_db,
        password=settings.valkey_auth_token if settings.valkey_auth_token else None,
        ssl=True if settings.valkey_auth_token else False,
        decode_responses=False,
    )


@contextmanager
def acquire_task_lock(
    lock_name: str,
    blocking: bool = False,
    timeout: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
):
    """
    Hold a distributed lock named celery:lock:<lock_name> for the block.

    Yields:
        bool: True if the lock was acquired, False if another run holds it
    """
    valkey_client = get_valkey_client()
    lock = valkey_client.lock(
        f"celery:lock:{lock_name}",
        timeout=timeout,
        blocking_timeout=0,
    )

    acquired = False
    try:
        acquired = lock.acquire(blocking=blocking)
        if acquired:
            logger.info(f"Acquired lock for task: {lock_name}")
        else:
            logger.info(
                f"Could not acquire lock for task: {lock_name} (task already running)"
            )
        yield acquired
    finally:
        if acquired:
            try:
                lock.release()
                logger.info(f"Released lock for task: {lock_name}")
            except Exception as e:
                logger.warning(f"Error releasing lock for task {lock_name}: {e}")


def with_task_lock(
    lock_name: str | None = None,
    blocking: bool = False,
    timeout: int = DEFAULT_LOCK_TIMEOUT_SECONDS,
):
    """
    Decorator that skips a task run while a previous run still holds the lock.

    Example:
        @shared_task(name="job_cleanup.cleanup_old_jobs")
        @with_task_lock(lock_name="job_cleanup")
        def cleanup_old_jobs():
            ...
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            task_lock_name = lock_name or func.__name__

            with acquire_task_lock(
                task_lock_name, blocking=blocking, timeout=timeout
            ) as acquired:
                if not acquired:
                    return {
                        "status": "skipped",
                        "reason": "previous_task_still_running",
                        "message": f"Task {task_lock_name} is already running, skipped this execution",
                    }
                return func(*args, **kwargs)

        return wrapper

    return decorator
