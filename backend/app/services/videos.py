from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import InvalidIdentifier, OwnershipMismatch, VideoNotFound
from app.models.user import User
from app.models.video import Video
from app.schemas.video import VideoResponse
from app.services.storage import AccessSigner


def parse_video_id(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError) as e:
        raise InvalidIdentifier(f"invalid video id {raw!r}") from e


def get_video(db: Session, video_id: uuid.UUID) -> Video:
    video = db.scalar(select(Video).where(Video.id == video_id))
    if video is None:
        raise VideoNotFound(f"video {video_id} not found")
    return video


def get_owned_video(db: Session, video_id: uuid.UUID, user: User) -> Video:
    video = get_video(db, video_id)
    if video.user_id != user.id:
        raise OwnershipMismatch(f"user {user.id} does not own video {video_id}")
    return video


def update_video(db: Session, video: Video) -> Video:
    video.updated_at = datetime.utcnow()
    db.add(video)
    db.commit()
    db.refresh(video)
    return video


def create_video(db: Session, *, user: User, title: str, description: str | None) -> Video:
    video = Video(user_id=user.id, title=title, description=description)
    db.add(video)
    db.commit()
    db.refresh(video)
    return video


def list_videos(db: Session, *, user: User) -> list[Video]:
    return list(db.scalars(select(Video).where(Video.user_id == user.id).order_by(Video.created_at.desc())).all())


def delete_video(db: Session, video: Video) -> None:
    db.delete(video)
    db.commit()


def signed_video_view(video: Video, signer: AccessSigner) -> VideoResponse:
    """Render a record with freshly signed URLs in place of stored references.

    Signed URLs are recomputed on every call; a signature handed out earlier
    may already be expired.
    """
    video_url = None
    video_url_expires_at = None
    if video.video_url:
        access = signer.sign(video.video_url)
        video_url = access.url
        video_url_expires_at = access.expires_at

    thumbnail_url = None
    if video.thumbnail_url:
        thumbnail_url = signer.sign(video.thumbnail_url).url

    return VideoResponse(
        id=str(video.id),
        user_id=str(video.user_id),
        title=video.title,
        description=video.description,
        thumbnail_url=thumbnail_url,
        video_url=video_url,
        video_url_expires_at=video_url_expires_at,
        created_at=video.created_at,
        updated_at=video.updated_at,
    )
