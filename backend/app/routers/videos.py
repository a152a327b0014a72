from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.errors import SigningFailure
from app.core.security import get_current_user
from app.core.security_audit_log import audit_log
from app.db.session import get_db
from app.models.user import User
from app.schemas.video import VideoCreateRequest, VideoResponse
from app.services.providers import get_publisher, get_signer
from app.services.storage import AccessSigner, ObjectPublisher, parse_reference
from app.services.videos import (
    create_video,
    delete_video,
    get_owned_video,
    list_videos,
    parse_video_id,
    signed_video_view,
)

router = APIRouter(prefix="/api/videos", tags=["videos"])

log = logging.getLogger(__name__)


@router.post("", response_model=VideoResponse)
def create(
    body: VideoCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    signer: AccessSigner = Depends(get_signer),
):
    video = create_video(db, user=user, title=body.title.strip(), description=body.description)
    return signed_video_view(video, signer)


@router.get("", response_model=list[VideoResponse])
def list_mine(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    signer: AccessSigner = Depends(get_signer),
):
    return [signed_video_view(v, signer) for v in list_videos(db, user=user)]


@router.get("/{video_id}", response_model=VideoResponse)
def read(
    video_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    signer: AccessSigner = Depends(get_signer),
):
    video = get_owned_video(db, parse_video_id(video_id), user)
    return signed_video_view(video, signer)


@router.delete("/{video_id}")
def delete(
    request: Request,
    video_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    publisher: ObjectPublisher = Depends(get_publisher),
):
    video = get_owned_video(db, parse_video_id(video_id), user)

    refs = [r for r in (video.video_url, video.thumbnail_url) if r]
    vid = video.id
    delete_video(db, video)

    for ref in refs:
        try:
            publisher.remove(parse_reference(ref))
        except SigningFailure:
            log.warning("videos: skipping malformed reference on delete video=%s", str(vid))

    audit_log(db=db, request=request, event_type="video_deleted", actor_user_id=user.id, video_id=vid)
    db.commit()
    return {"ok": True}
