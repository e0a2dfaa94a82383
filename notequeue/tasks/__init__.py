from notequeue.tasks import job_cleanup  # noqa: F401

__all__ = [
    "job_cleanup",
]
