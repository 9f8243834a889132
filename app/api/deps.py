"""API dependencies: auth, db session, services built at startup."""
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.exceptions import AuthenticationError, InvalidVideoIdError
from app.core.security import validate_access_token
from app.db.session import get_db
from app.services.storage_service import LocalAssetStore, ObjectStore
from app.services.upload_pipeline import VideoUploadPipeline
from app.services.video_service import VideoRepository

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_pipeline(request: Request) -> VideoUploadPipeline:
    return request.app.state.pipeline


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_asset_store(request: Request) -> LocalAssetStore:
    return request.app.state.asset_store


async def get_video_repository(db: AsyncSession = Depends(get_db)) -> VideoRepository:
    return VideoRepository(db)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> UUID:
    if not credentials:
        raise AuthenticationError("Couldn't find JWT")
    return validate_access_token(credentials.credentials, settings.JWT_SECRET_KEY, settings.JWT_ALGORITHM)


def parse_video_id(video_id: str) -> UUID:
    try:
        return UUID(video_id)
    except ValueError:
        raise InvalidVideoIdError("Invalid video ID") from None
