"""Video records and their media uploads."""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from starlette.datastructures import UploadFile
from starlette.types import Message

from app.api.deps import (
    get_asset_store,
    get_current_user_id,
    get_object_store,
    get_pipeline,
    get_settings,
    get_video_repository,
    parse_video_id,
)
from app.core.config import Settings
from app.core.exceptions import AuthorizationError, PayloadTooLargeError, StoreDeleteError, ValidationError
from app.schemas.video import VideoCreate, VideoResponse
from app.services.storage_service import LocalAssetStore, ObjectStore
from app.services.thumbnail_service import upload_thumbnail
from app.services.upload_pipeline import VideoUpload, VideoUploadPipeline
from app.services.video_service import VideoRepository
from app.workers.storage_cleanup import schedule_orphan_purge

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/videos", tags=["videos"])

# Boundary lines and part headers on top of the file itself
MULTIPART_OVERHEAD_BYTES = 64 * 1024


@asynccontextmanager
async def read_upload(request: Request, field: str, max_bytes: int) -> AsyncIterator[UploadFile]:
    """Parse a single-file multipart body, reading at most ``max_bytes`` plus overhead.

    The body is only read here, so callers resolve auth first and an
    unauthenticated or oversized request never reaches the disk.
    """
    limit = max_bytes + MULTIPART_OVERHEAD_BYTES
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise PayloadTooLargeError(f"File too large. Max {max_bytes} bytes")

    received = 0

    async def receive() -> Message:
        nonlocal received
        message = await request.receive()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > limit:
                raise PayloadTooLargeError(f"File too large. Max {max_bytes} bytes")
        return message

    form = await Request(request.scope, receive).form(max_files=1, max_fields=10)
    try:
        upload = form.get(field)
        if not isinstance(upload, UploadFile):
            raise ValidationError(f"Missing multipart file field '{field}'")
        yield upload
    finally:
        await form.close()


@router.post("", response_model=VideoResponse, status_code=status.HTTP_201_CREATED)
async def create_video(
    data: VideoCreate,
    user_id: UUID = Depends(get_current_user_id),
    videos: VideoRepository = Depends(get_video_repository),
):
    return await videos.create(user_id, data)


@router.get("", response_model=list[VideoResponse])
async def list_videos(
    user_id: UUID = Depends(get_current_user_id),
    videos: VideoRepository = Depends(get_video_repository),
):
    return await videos.list_for_user(user_id)


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_uuid: UUID = Depends(parse_video_id),
    videos: VideoRepository = Depends(get_video_repository),
):
    return await videos.get(video_uuid)


@router.delete("/{video_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_video(
    video_uuid: UUID = Depends(parse_video_id),
    user_id: UUID = Depends(get_current_user_id),
    videos: VideoRepository = Depends(get_video_repository),
    store: ObjectStore = Depends(get_object_store),
    assets: LocalAssetStore = Depends(get_asset_store),
):
    """Remove the record, then its stored video and thumbnail."""
    video = await videos.get(video_uuid)
    if video.user_id != user_id:
        raise AuthorizationError("Video does not belong to this user")
    video_url, thumbnail_url = video.video_url, video.thumbnail_url
    await videos.delete(video)

    key = store.key_from_url(video_url) if video_url else None
    if key:
        try:
            await store.delete(key)
        except StoreDeleteError as e:
            logger.warning(
                "Failed to delete stored video, scheduling purge",
                extra={"video_id": str(video_uuid), "key": key, "error": e.message},
            )
            schedule_orphan_purge(key)
    if thumbnail_url:
        try:
            assets.delete(thumbnail_url)
        except OSError as e:
            logger.warning(
                "Failed to delete thumbnail",
                extra={"video_id": str(video_uuid), "url": thumbnail_url, "error": str(e)},
            )


@router.post("/{video_id}/video", response_model=VideoResponse)
async def upload_video(
    request: Request,
    video_uuid: UUID = Depends(parse_video_id),
    user_id: UUID = Depends(get_current_user_id),
    pipeline: VideoUploadPipeline = Depends(get_pipeline),
    videos: VideoRepository = Depends(get_video_repository),
):
    """Upload an MP4 (multipart field ``video``). Replaces (and deletes) any previous upload."""
    logger.info("Uploading video", extra={"video_id": str(video_uuid), "user_id": str(user_id)})
    async with read_upload(request, "video", pipeline.max_upload_bytes) as video:
        upload = VideoUpload(
            video_id=video_uuid,
            user_id=user_id,
            content_type=video.content_type or "",
            stream=video,
        )
        result = await pipeline.run(upload, videos)
    return result.video


@router.post("/{video_id}/thumbnail", response_model=VideoResponse)
async def upload_video_thumbnail(
    request: Request,
    video_uuid: UUID = Depends(parse_video_id),
    user_id: UUID = Depends(get_current_user_id),
    videos: VideoRepository = Depends(get_video_repository),
    assets: LocalAssetStore = Depends(get_asset_store),
    settings: Settings = Depends(get_settings),
):
    """Upload a png or jpeg thumbnail (multipart field ``thumbnail``)."""
    max_bytes = settings.MAX_THUMBNAIL_UPLOAD_BYTES
    async with read_upload(request, "thumbnail", max_bytes) as thumbnail:
        data = await thumbnail.read(max_bytes + 1)
        content_type = thumbnail.content_type
    return await upload_thumbnail(
        videos,
        assets,
        video_id=video_uuid,
        user_id=user_id,
        content_type=content_type,
        data=data,
        max_bytes=max_bytes,
    )
