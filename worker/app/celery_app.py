from celery import Celery

from . import log  # noqa: F401
from .config import settings

celery_app = Celery(
    "backups",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["worker.app.tasks"],
)

celery_app.conf.task_routes = {
    "worker.app.tasks.*": {"queue": settings.backups_queue},
}

# one job per worker process; unacked messages are redelivered if the worker dies
celery_app.conf.task_acks_late = True
celery_app.conf.worker_prefetch_multiplier = 1

celery_app.conf.beat_schedule = {
    "reconcile-stuck-backups": {
        "task": "worker.app.tasks.reconcile_stuck_jobs",
        "schedule": 15 * 60.0,
    },
}
