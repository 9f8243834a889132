"""Pydantic schemas for Video."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class VideoBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class VideoCreate(VideoBase):
    pass


class VideoResponse(VideoBase):
    id: UUID
    user_id: UUID
    thumbnail_url: str | None = None
    video_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
