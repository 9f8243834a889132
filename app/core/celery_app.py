"""Celery application for background storage maintenance."""
from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "tubely",
    broker=settings.CELERY_BROKER_URL,
    include=["app.workers.storage_cleanup"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
)
