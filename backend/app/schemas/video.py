from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class VideoCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=400)
    description: str | None = None


class VideoResponse(BaseModel):
    id: str
    user_id: str
    title: str
    description: str | None = None
    thumbnail_url: str | None = None
    video_url: str | None = None
    video_url_expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
