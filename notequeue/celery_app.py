import asyncio
import logging

from celery import Celery, signals
from celery.schedules import crontab

from notequeue.config import settings

logger = logging.getLogger(__name__)


@signals.worker_process_init.connect
def init_worker_process(**kwargs):
    """Forked children must not reuse the parent's async engine or its loop."""
    import notequeue.db.session as session_module

    logger.info("Celery worker process started; resetting the database engine")
    session_module._engine = None
    session_module._AsyncSessionLocal = None


@signals.worker_process_shutdown.connect
def shutdown_worker_process(**kwargs):
    import notequeue.db.session as session_module

    if session_module._engine is None:
        return
    try:
        asyncio.run(session_module.dispose_engine())
    except Exception as e:
        logger.error(f"Error disposing database engine during shutdown: {e}")


def _build_broker_url() -> str:
    if settings.celery_broker_url:
        return settings.celery_broker_url

    scheme = "rediss" if settings.valkey_auth_token else "redis"
    auth_segment = (
        f":{settings.valkey_auth_token}@" if settings.valkey_auth_token else ""
    )
    ssl_params = "?ssl_cert_reqs=CERT_REQUIRED" if settings.valkey_auth_token else ""
    return f"{scheme}://{auth_segment}{settings.valkey_host}:{settings.valkey_port}/{settings.valkey_db}{ssl_params}"


def _build_result_backend() -> str:
    if settings.celery_result_backend:
        return settings.celery_result_backend
    return _build_broker_url()


celery_app = Celery(
    "notequeue",
    broker=_build_broker_url(),
    backend=_build_result_backend(),
)

_ssl_conf = {}
if settings.valkey_auth_token:
    import ssl

    _ssl_conf = {
        "broker_use_ssl": {"ssl_cert_reqs": ssl.CERT_REQUIRED},
        "redis_backend_use_ssl": {"ssl_cert_reqs": ssl.CERT_REQUIRED},
    }

celery_app.conf.update(
    task_serializer=settings.celery_task_serializer,
    result_serializer=settings.celery_result_serializer,
    timezone="UTC",
    enable_utc=True,
    **_ssl_conf,
    beat_schedule={
        "job-cleanup": {
            "task": "job_cleanup.cleanup_old_jobs",
            "schedule": crontab(hour=settings.cleanup_hour_utc, minute=0),
            "kwargs": {"older_than_days": settings.cleanup_older_than_days},
        },
    },
)

celery_app.autodiscover_tasks(["notequeue.tasks"])


def get_celery_app() -> Celery:
    return celery_app
