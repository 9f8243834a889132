"""Video record persistence."""
import logging
from typing import Protocol
from uuid import UUID

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import PersistenceError, VideoNotFoundError
from app.models.video import Video
from app.schemas.video import VideoCreate

logger = logging.getLogger(__name__)


class VideoStore(Protocol):
    """The two metadata operations the upload flows depend on."""

    async def get(self, video_id: UUID) -> Video:
        ...

    async def update(self, video: Video) -> Video:
        ...


class VideoRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, video_id: UUID) -> Video:
        result = await self.db.execute(select(Video).where(Video.id == video_id))
        video = result.scalar_one_or_none()
        if video is None:
            raise VideoNotFoundError("Video not found")
        return video

    async def list_for_user(self, user_id: UUID) -> list[Video]:
        result = await self.db.execute(
            select(Video).where(Video.user_id == user_id).order_by(desc(Video.created_at))
        )
        return list(result.scalars().all())

    async def create(self, user_id: UUID, data: VideoCreate) -> Video:
        video = Video(user_id=user_id, title=data.title, description=data.description)
        self.db.add(video)
        await self._commit(video)
        await self.db.refresh(video)
        return video

    async def update(self, video: Video) -> Video:
        """Commit pending changes to ``video``.

        The model is versioned, so a concurrent update of the same row fails
        here instead of being silently overwritten.
        """
        await self._commit(video)
        return video

    async def delete(self, video: Video) -> None:
        await self.db.delete(video)
        await self._commit(video)

    async def _commit(self, video: Video) -> None:
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning("Concurrent video update", extra={"video_id": str(video.id)})
            raise PersistenceError("Video was modified concurrently, retry the upload") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to persist video", extra={"video_id": str(video.id), "error": str(e)})
            raise PersistenceError("Couldn't update video in database") from e
