"""Thumbnail upload: validate, store on local disk, point the video at it."""
import logging
from uuid import UUID

from app.core.exceptions import AuthorizationError, PayloadTooLargeError, UnsupportedMediaError
from app.models.video import Video
from app.services.storage_service import LocalAssetStore
from app.services.upload_pipeline import parse_media_type
from app.services.video_service import VideoStore

logger = logging.getLogger(__name__)

THUMBNAIL_MEDIA_TYPES = {"image/png", "image/jpeg"}


async def upload_thumbnail(
    videos: VideoStore,
    assets: LocalAssetStore,
    *,
    video_id: UUID,
    user_id: UUID,
    content_type: str | None,
    data: bytes,
    max_bytes: int,
) -> Video:
    video = await videos.get(video_id)
    if video.user_id != user_id:
        raise AuthorizationError("Video does not belong to this user")

    media_type = parse_media_type(content_type)
    if media_type not in THUMBNAIL_MEDIA_TYPES:
        raise UnsupportedMediaError("Invalid file format, thumbnails must be png or jpeg")
    if len(data) > max_bytes:
        raise PayloadTooLargeError(f"File too large. Max {max_bytes} bytes")

    previous_url = video.thumbnail_url
    new_url = assets.save(data, media_type)
    video.thumbnail_url = new_url
    try:
        await videos.update(video)
    except Exception:
        assets.delete(new_url)
        raise

    if previous_url:
        try:
            assets.delete(previous_url)
        except OSError as e:
            logger.warning(
                "Failed to delete previous thumbnail",
                extra={"video_id": str(video_id), "url": previous_url, "error": str(e)},
            )

    logger.info("Thumbnail uploaded", extra={"video_id": str(video_id), "url": new_url})
    return video
