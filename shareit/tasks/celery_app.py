from celery import Celery
from celery.schedules import crontab

from shareit.config import settings

app = Celery(
    "shareit",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "shareit.tasks.order_tasks.*": {"queue": "orders"},
        "shareit.tasks.settlement_tasks.*": {"queue": "settlements"},
    },
    beat_schedule={
        "advance-in-transit-orders": {
            "task": "shareit.tasks.order_tasks.advance_in_transit_orders",
            "schedule": crontab(hour=0, minute=15),
        },
        "settle-pending-violations": {
            "task": "shareit.tasks.settlement_tasks.settle_pending_violations",
            "schedule": crontab(minute=0),  # every hour
        },
    },
)

app.autodiscover_tasks(
    [
        "shareit.tasks.order_tasks",
        "shareit.tasks.settlement_tasks",
    ]
)
