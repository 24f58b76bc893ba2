from celery import Celery
from app.config import REDIS_URL, CRON_INTERVAL_S, CLEANUP_INTERVAL_S, POLL_INTERVAL_S, QUEUE_DISPATCH, QUEUE_MAINTENANCE

celery_app = Celery("procqueue", broker=REDIS_URL, backend=REDIS_URL, include=["worker.tasks"])

celery_app.conf.beat_schedule = {
    "materialize-schedules": {
        "task": "worker.tasks.materialize_schedules",
        "schedule": CRON_INTERVAL_S,
        "options": {"queue": QUEUE_MAINTENANCE},
    },
    "reap-orphans": {
        "task": "worker.tasks.reap_orphans",
        "schedule": CLEANUP_INTERVAL_S,
        "options": {"queue": QUEUE_MAINTENANCE},
    },
    # Restarts dispatch chains that ended on an idle queue
    "kick-dispatcher": {
        "task": "worker.tasks.dispatch_queue",
        "schedule": max(POLL_INTERVAL_S, 5.0),
        "options": {"queue": QUEUE_DISPATCH},
    },
}

celery_app.conf.task_acks_late = True
celery_app.conf.worker_prefetch_multiplier = 1
celery_app.conf.task_routes = {
    "worker.tasks.dispatch_queue": {"queue": QUEUE_DISPATCH},
    "worker.tasks.materialize_schedules": {"queue": QUEUE_MAINTENANCE},
    "worker.tasks.reap_orphans": {"queue": QUEUE_MAINTENANCE},
}
