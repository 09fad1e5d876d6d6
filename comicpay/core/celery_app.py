"""
Celery application: broker and result backend from settings.
Periodic jobs: nonce sweep and nightly balance reconciliation (comicpay.workers.tasks).
"""
from celery import Celery
from celery.schedules import crontab

from comicpay.core.config import settings

celery_app = Celery(
    "comicpay",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "comicpay.workers.tasks.nonce_sweep",
        "comicpay.workers.tasks.reconcile",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    timezone="UTC",
    beat_schedule={
        "sweep-expired-nonces": {
            "task": "comicpay.workers.tasks.nonce_sweep.sweep_expired_nonces",
            "schedule": crontab(minute="*/10"),
        },
        "reconcile-balances": {
            "task": "comicpay.workers.tasks.reconcile.reconcile_balances",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)
