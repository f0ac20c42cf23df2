"""SiteStock — Celery worker configuration."""
from celery import Celery

from sitestock.config import get_settings

settings = get_settings()

celery_app = Celery(
    "sitestock",
    broker=settings.CELERY_BROKER_URL,
    include=["sitestock.tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_ignore_result=True,
    task_routes={
        "sitestock.tasks.*": {"queue": "notifications"},
    },
)
