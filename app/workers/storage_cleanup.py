"""Celery tasks that remove objects left behind by failed uploads."""
import logging

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.exceptions import StoreDeleteError
from app.services.storage_service import S3ObjectStore

logger = logging.getLogger(__name__)


@celery_app.task(
    autoretry_for=(StoreDeleteError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 5},
)
def purge_orphaned_object(key: str) -> None:
    """Delete an uploaded object whose URL never made it onto a video record."""
    S3ObjectStore(settings).delete_object(key)
    logger.info("Purged orphaned object", extra={"key": key})


def schedule_orphan_purge(key: str, countdown: int | None = None) -> None:
    """Queue ``key`` for deletion, ``countdown`` seconds from now.

    A put that timed out on our side may still be running in its worker
    thread, so the upload pipeline delays the purge past the storage
    client's own timeouts.
    """
    try:
        purge_orphaned_object.apply_async((key,), countdown=countdown)
    except Exception as e:
        # The upload has already failed; a lost cleanup only costs storage
        logger.warning("Failed to enqueue orphan purge", extra={"key": key, "error": str(e)})
