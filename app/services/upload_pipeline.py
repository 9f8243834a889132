"""Video upload pipeline.

A run moves through the states of ``UploadStage``::

    RECEIVED -> AUTHORIZED -> STAGED -> REMUXED -> PROBED -> KEY_DERIVED
             -> UPLOADED -> RECONCILED -> PERSISTED

and either reaches PERSISTED or raises a ``TubelyError`` whose ``stage`` is the
state it failed to enter. Temporary files are removed when ``run`` returns,
whatever the outcome. The pipeline object itself only holds collaborators, so
one instance serves concurrent requests.
"""
import asyncio
import enum
import logging
import os
import tempfile
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol
from uuid import UUID

from app.core.exceptions import (
    AuthorizationError,
    DeadlineExceededError,
    PayloadTooLargeError,
    StagingError,
    StoreDeleteError,
    TubelyError,
    UnsupportedMediaError,
)
from app.models.video import Video
from app.services.media_service import MediaProber, MediaRemuxer, Orientation, classify_orientation
from app.services.storage_service import ObjectStore, build_video_key
from app.services.video_service import VideoStore

logger = logging.getLogger(__name__)

VIDEO_MEDIA_TYPE = "video/mp4"
CHUNK_SIZE = 1 << 20


class UploadStage(str, enum.Enum):
    RECEIVED = "received"
    AUTHORIZED = "authorized"
    STAGED = "staged"
    REMUXED = "remuxed"
    PROBED = "probed"
    KEY_DERIVED = "key_derived"
    UPLOADED = "uploaded"
    RECONCILED = "reconciled"
    PERSISTED = "persisted"
    FAILED = "failed"

    def next(self) -> "UploadStage":
        order = _STAGE_ORDER
        return order[min(order.index(self) + 1, len(order) - 1)]


_STAGE_ORDER = [stage for stage in UploadStage if stage is not UploadStage.FAILED]


class AsyncReader(Protocol):
    async def read(self, size: int = -1) -> bytes:
        ...


@dataclass
class VideoUpload:
    video_id: UUID
    user_id: UUID
    content_type: str
    stream: AsyncReader


@dataclass
class UploadResult:
    video: Video
    key: str
    orientation: Orientation


def parse_media_type(content_type: str | None) -> str:
    """``'Video/MP4; codecs=avc1'`` -> ``'video/mp4'``."""
    return (content_type or "").split(";", 1)[0].strip().lower()


async def copy_limited(stream: AsyncReader, out: BinaryIO, max_bytes: int) -> int:
    """Copy ``stream`` into ``out`` in chunks, refusing more than ``max_bytes``."""
    total = 0
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            return total
        total += len(chunk)
        if total > max_bytes:
            raise PayloadTooLargeError(f"File too large. Max {max_bytes} bytes")
        out.write(chunk)


class Deadline:
    """Absolute time budget shared by every blocking stage of one run."""

    def __init__(self, seconds: float | None):
        self.expires_at = None if seconds is None else time.monotonic() + seconds

    def remaining(self, cap: float | None = None) -> float | None:
        """Seconds left, limited to ``cap``; raises once the budget is spent."""
        if self.expires_at is None:
            return cap
        left = self.expires_at - time.monotonic()
        if left <= 0:
            raise DeadlineExceededError("Upload deadline exceeded")
        return left if cap is None else min(left, cap)


@dataclass
class _UploadRun:
    upload: VideoUpload
    deadline: Deadline
    stage: UploadStage = UploadStage.RECEIVED
    staged_path: Path | None = None
    processed_path: Path | None = None
    key: str | None = None
    put_attempted: bool = False

    def advance(self, stage: UploadStage) -> None:
        self.stage = stage
        logger.debug("Upload stage reached", extra={"video_id": str(self.upload.video_id), "stage": stage.value})

    def temp_paths(self) -> list[Path]:
        return [p for p in (self.processed_path, self.staged_path) if p is not None]


class VideoUploadPipeline:
    """Stage, remux, probe, upload and record one video per ``run`` call."""

    def __init__(
        self,
        *,
        prober: MediaProber,
        remuxer: MediaRemuxer,
        store: ObjectStore,
        max_upload_bytes: int,
        tool_timeout: float | None = None,
        storage_timeout: float | None = None,
        deadline_seconds: float | None = None,
        temp_dir: str | None = None,
        on_orphan: Callable[[str], None] | None = None,
    ):
        self.prober = prober
        self.remuxer = remuxer
        self.store = store
        self.max_upload_bytes = max_upload_bytes
        self.tool_timeout = tool_timeout
        self.storage_timeout = storage_timeout
        self.deadline_seconds = deadline_seconds
        self.temp_dir = temp_dir
        self.on_orphan = on_orphan

    async def run(self, upload: VideoUpload, videos: VideoStore) -> UploadResult:
        run = _UploadRun(upload=upload, deadline=Deadline(self.deadline_seconds))
        try:
            return await self._execute(run, videos)
        except TubelyError as e:
            if e.stage is None:
                e.stage = run.stage.next()
            self._log_failure(run, e)
            self._report_orphan(run, e)
            raise
        finally:
            self._cleanup(run)

    async def _execute(self, run: _UploadRun, videos: VideoStore) -> UploadResult:
        upload = run.upload

        video = await videos.get(upload.video_id)
        if video.user_id != upload.user_id:
            raise AuthorizationError("Video does not belong to this user")
        run.advance(UploadStage.AUTHORIZED)

        media_type = parse_media_type(upload.content_type)
        if media_type != VIDEO_MEDIA_TYPE:
            raise UnsupportedMediaError("Invalid video file type, videos must be a .mp4")
        await self._stage(run)
        run.advance(UploadStage.STAGED)

        run.processed_path = await self.remuxer.remux(
            run.staged_path, timeout=run.deadline.remaining(self.tool_timeout)
        )
        run.advance(UploadStage.REMUXED)

        stream = await self.prober.probe(run.processed_path, timeout=run.deadline.remaining(self.tool_timeout))
        run.advance(UploadStage.PROBED)

        orientation = classify_orientation(stream)
        run.key = build_video_key(orientation.value, media_type)
        run.advance(UploadStage.KEY_DERIVED)

        run.put_attempted = True
        await self._bounded(
            run, lambda: self.store.put(run.key, run.processed_path, media_type), self.storage_timeout
        )
        run.advance(UploadStage.UPLOADED)

        await self._reconcile(run, video)
        run.advance(UploadStage.RECONCILED)

        video.video_url = self.store.public_url(run.key)
        await videos.update(video)
        run.advance(UploadStage.PERSISTED)

        logger.info(
            "Video upload complete",
            extra={
                "video_id": str(video.id),
                "user_id": str(upload.user_id),
                "key": run.key,
                "orientation": orientation.value,
                "width": stream.width,
                "height": stream.height,
            },
        )
        return UploadResult(video=video, key=run.key, orientation=orientation)

    async def _stage(self, run: _UploadRun) -> None:
        try:
            fd, name = tempfile.mkstemp(prefix="tubely-upload-", suffix=".mp4", dir=self.temp_dir)
        except OSError as e:
            raise StagingError(f"Couldn't create temp file: {e}") from e
        run.staged_path = Path(name)
        try:
            with os.fdopen(fd, "wb") as out:
                size = await self._bounded(
                    run, lambda: copy_limited(run.upload.stream, out, self.max_upload_bytes), None
                )
        except OSError as e:
            raise StagingError(f"Couldn't write upload to temp file: {e}") from e
        logger.debug("Staged upload", extra={"video_id": str(run.upload.video_id), "size_bytes": size})

    async def _reconcile(self, run: _UploadRun, video: Video) -> None:
        """Delete the object the record pointed at before this upload."""
        if not video.video_url:
            return
        old_key = self.store.key_from_url(video.video_url)
        if old_key is None:
            logger.warning(
                "Previous video URL is outside the object store, nothing to delete",
                extra={"video_id": str(video.id), "video_url": video.video_url},
            )
            return
        try:
            await self._bounded(run, lambda: self.store.delete(old_key), self.storage_timeout)
        except StoreDeleteError:
            logger.warning(
                "Reconciliation failed, previous object was not deleted",
                extra={"video_id": str(video.id), "old_key": old_key, "new_key": run.key},
            )
            raise

    async def _bounded(self, run: _UploadRun, make: Callable[[], Awaitable], cap: float | None):
        timeout = run.deadline.remaining(cap)
        try:
            return await asyncio.wait_for(make(), timeout=timeout)
        except asyncio.TimeoutError:
            raise DeadlineExceededError(f"Upload deadline exceeded before stage {run.stage.next().value}") from None

    def _report_orphan(self, run: _UploadRun, error: TubelyError) -> None:
        if not run.put_attempted or run.key is None or self.on_orphan is None:
            return
        try:
            self.on_orphan(run.key)
        except Exception:
            logger.exception("Failed to schedule orphan cleanup", extra={"key": run.key})

    def _log_failure(self, run: _UploadRun, error: TubelyError) -> None:
        extra = {
            "video_id": str(run.upload.video_id),
            "user_id": str(run.upload.user_id),
            "stage": error.stage.value if isinstance(error.stage, UploadStage) else error.stage,
            "error": error.message,
        }
        if error.status_code < 500:
            logger.info("Video upload rejected", extra=extra)
        else:
            logger.error("Video upload failed", extra=extra)

    @staticmethod
    def _cleanup(run: _UploadRun) -> None:
        for path in run.temp_paths():
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to remove temp file", extra={"path": str(path), "error": str(e)})
