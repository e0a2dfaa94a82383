from notequeue.celery_app import celery_app
from notequeue.tasks import job_cleanup

__all__ = [
    "celery_app",
    "job_cleanup",
]
