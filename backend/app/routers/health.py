from fastapi import APIRouter, HTTPException
from sqlalchemy import text

from app.core.config import settings
from app.db import session as session_module
from app.services.media_tools import missing_media_tools
from app.services.storage import get_s3_client

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
def ready():
    try:
        db = session_module.SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as e:
        raise HTTPException(status_code=503, detail="db not ready") from e

    missing = missing_media_tools(settings.ffmpeg_path, settings.ffprobe_path)
    if missing:
        raise HTTPException(status_code=503, detail="media tools not found: " + ", ".join(missing))

    try:
        s3 = get_s3_client(settings=settings)
        s3.head_bucket(Bucket=settings.s3_bucket)
    except Exception as e:
        raise HTTPException(status_code=503, detail="s3 not ready") from e

    return {"status": "ready"}
