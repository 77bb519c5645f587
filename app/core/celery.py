"""
Celery configuration for the ledger maintenance tasks
"""
from celery import Celery
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "monterrey_ledger",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.modules.invoices.tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Santo_Domingo",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=3600,  # 1 hour

    task_routes={
        "app.modules.invoices.tasks.*": {"queue": "ledger"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "reconcile-invoice-balances": {
            "task": "app.modules.invoices.tasks.reconcile_invoice_balances",
            "schedule": settings.RECONCILE_INTERVAL_SECONDS,
        },
        "sync-ncf-sequences": {
            "task": "app.modules.invoices.tasks.sync_ncf_sequences",
            "schedule": settings.SEQUENCE_SYNC_INTERVAL_SECONDS,
        }
    }
)

if __name__ == "__main__":
    celery_app.start()
