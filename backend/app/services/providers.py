from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from app.core.config import settings
from app.services.media_tools import FFmpegToolRunner, MediaToolRunner
from app.services.storage import AccessSigner, ObjectPublisher, build_publisher, build_signer
from app.services.video_pipeline import VideoIngestPipeline


# boto3 clients are thread-safe; one per process is enough.


@lru_cache(maxsize=1)
def get_media_tools() -> MediaToolRunner:
    return FFmpegToolRunner.from_settings(settings)


@lru_cache(maxsize=1)
def get_publisher() -> ObjectPublisher:
    return build_publisher(settings=settings)


@lru_cache(maxsize=1)
def get_signer() -> AccessSigner:
    return build_signer(settings=settings)


def get_pipeline(
    tools: MediaToolRunner = Depends(get_media_tools),
    publisher: ObjectPublisher = Depends(get_publisher),
) -> VideoIngestPipeline:
    return VideoIngestPipeline.from_settings(settings, tools=tools, publisher=publisher)
