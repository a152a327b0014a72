from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile
from sqlalchemy.orm import Session

from app.core.errors import OwnershipMismatch, PipelineError
from app.core.rate_limit import rate_limit
from app.core.security import get_current_user
from app.core.security_audit_log import audit_log
from app.db.session import get_db
from app.models.user import User
from app.schemas.video import VideoResponse
from app.services.providers import get_pipeline, get_signer
from app.services.storage import AccessSigner
from app.services.video_pipeline import VideoIngestPipeline
from app.services.videos import get_owned_video, parse_video_id, signed_video_view, update_video

router = APIRouter(prefix="/api", tags=["uploads"])

log = logging.getLogger(__name__)


def _load_owned(db: Session, request: Request, raw_video_id: str, user: User, *, kind: str):
    vid = parse_video_id(raw_video_id)
    try:
        return get_owned_video(db, vid, user)
    except OwnershipMismatch:
        audit_log(db=db, request=request, event_type=f"{kind}_upload_denied", actor_user_id=user.id, video_id=vid)
        db.commit()
        raise


# Sync handlers: ffmpeg/ffprobe block, so these run in the worker threadpool.


@router.post("/video_upload/{video_id}", response_model=VideoResponse)
def upload_video(
    request: Request,
    video_id: str,
    upload: UploadFile = File(..., alias="video"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    pipeline: VideoIngestPipeline = Depends(get_pipeline),
    signer: AccessSigner = Depends(get_signer),
    _: object = rate_limit(key_prefix="video_upload", limit=10, window_seconds=60),
):
    video = _load_owned(db, request, video_id, user, kind="video")
    log.info("uploading video %s by user %s", str(video.id), str(user.id))

    try:
        published = pipeline.ingest_video(upload.file, upload.content_type)
    except PipelineError as e:
        audit_log(
            db=db,
            request=request,
            event_type="video_upload_failed",
            actor_user_id=user.id,
            video_id=video.id,
            meta={"category": e.category, "stage": e.stage},
        )
        db.commit()
        raise
    finally:
        upload.file.close()

    video.video_url = published.reference
    update_video(db, video)

    audit_log(
        db=db,
        request=request,
        event_type="video_upload_success",
        actor_user_id=user.id,
        video_id=video.id,
        meta={"key": published.key, "content_type": published.content_type},
    )
    db.commit()

    return signed_video_view(video, signer)


@router.post("/thumbnail_upload/{video_id}", response_model=VideoResponse)
def upload_thumbnail(
    request: Request,
    video_id: str,
    upload: UploadFile = File(..., alias="thumbnail"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    pipeline: VideoIngestPipeline = Depends(get_pipeline),
    signer: AccessSigner = Depends(get_signer),
    _: object = rate_limit(key_prefix="thumbnail_upload", limit=30, window_seconds=60),
):
    video = _load_owned(db, request, video_id, user, kind="thumbnail")
    log.info("uploading thumbnail for video %s by user %s", str(video.id), str(user.id))

    try:
        published = pipeline.ingest_thumbnail(upload.file, upload.content_type)
    except PipelineError as e:
        audit_log(
            db=db,
            request=request,
            event_type="thumbnail_upload_failed",
            actor_user_id=user.id,
            video_id=video.id,
            meta={"category": e.category, "stage": e.stage},
        )
        db.commit()
        raise
    finally:
        upload.file.close()

    video.thumbnail_url = published.reference
    update_video(db, video)

    audit_log(
        db=db,
        request=request,
        event_type="thumbnail_upload_success",
        actor_user_id=user.id,
        video_id=video.id,
        meta={"key": published.key, "content_type": published.content_type},
    )
    db.commit()

    return signed_video_view(video, signer)
