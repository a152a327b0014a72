"""Upload -> fast-start remux -> probe -> classify -> key -> publish.

Stages run strictly in order inside one call. Each call owns its own temp
files (unique names from ``tempfile``) and keeps no state on the instance, so
one pipeline object can serve concurrent requests.
"""

from __future__ import annotations

import logging
import pathlib
import time
from contextlib import ExitStack
from typing import BinaryIO

from app.core.config import Settings
from app.core.errors import IOFailure, PipelineError
from app.services.aspect import classify
from app.services.keys import derive_storage_key, extension_for
from app.services.landing import (
    DEFAULT_CHUNK_BYTES,
    THUMBNAIL_MEDIA_TYPES,
    VIDEO_MEDIA_TYPES,
    land_stream,
    remove_quietly,
)
from app.services.media_tools import MediaToolRunner
from app.services.storage import ObjectPublisher, PublishedObject


log = logging.getLogger(__name__)

THUMBNAIL_PREFIX = "thumbnails"


class VideoIngestPipeline:
    def __init__(
        self,
        *,
        tools: MediaToolRunner,
        publisher: ObjectPublisher,
        video_max_bytes: int,
        thumbnail_max_bytes: int,
        tmp_dir: str | None = None,
        chunk_bytes: int = DEFAULT_CHUNK_BYTES,
    ):
        self.tools = tools
        self.publisher = publisher
        self.video_max_bytes = int(video_max_bytes)
        self.thumbnail_max_bytes = int(thumbnail_max_bytes)
        self.tmp_dir = tmp_dir
        self.chunk_bytes = int(chunk_bytes)

    @classmethod
    def from_settings(cls, settings: Settings, *, tools: MediaToolRunner, publisher: ObjectPublisher) -> "VideoIngestPipeline":
        return cls(
            tools=tools,
            publisher=publisher,
            video_max_bytes=int(settings.video_max_upload_bytes),
            thumbnail_max_bytes=int(settings.thumbnail_max_upload_bytes),
            tmp_dir=settings.upload_tmp_dir,
            chunk_bytes=int(settings.upload_chunk_bytes),
        )

    def ingest_video(self, stream: BinaryIO, content_type: str | None) -> PublishedObject:
        t0 = time.perf_counter()
        with ExitStack() as stack:
            landed = stack.enter_context(
                land_stream(
                    stream,
                    content_type=content_type,
                    allowed_types=VIDEO_MEDIA_TYPES,
                    max_bytes=self.video_max_bytes,
                    suffix=".mp4",
                    tmp_dir=self.tmp_dir,
                    chunk_bytes=self.chunk_bytes,
                )
            )

            processed = self.tools.remux(landed.path)
            stack.callback(remove_quietly, processed)
            # The landed copy is not needed past this point.
            remove_quietly(landed.path)

            geometry = self.tools.probe(processed)
            aspect = classify(geometry.width, geometry.height)
            key = derive_storage_key(aspect, extension_for(landed.media_type))

            published = self._publish_file(processed, key=key, content_type=landed.media_type)

        log.info(
            "video_pipeline: published key=%s width=%s height=%s aspect=%s bytes=%s duration_ms=%s",
            published.key,
            geometry.width,
            geometry.height,
            aspect.value,
            landed.size,
            int((time.perf_counter() - t0) * 1000),
        )
        return published

    def ingest_thumbnail(self, stream: BinaryIO, content_type: str | None) -> PublishedObject:
        with land_stream(
            stream,
            content_type=content_type,
            allowed_types=THUMBNAIL_MEDIA_TYPES,
            max_bytes=self.thumbnail_max_bytes,
            tmp_dir=self.tmp_dir,
            chunk_bytes=self.chunk_bytes,
        ) as landed:
            key = derive_storage_key(THUMBNAIL_PREFIX, extension_for(landed.media_type))
            published = self._publish_file(landed.path, key=key, content_type=landed.media_type)

        log.info("video_pipeline: published thumbnail key=%s bytes=%s", published.key, landed.size)
        return published

    def _publish_file(self, path: pathlib.Path, *, key: str, content_type: str) -> PublishedObject:
        try:
            f = path.open("rb")
        except OSError as e:
            raise IOFailure(f"could not open {path} for upload", stage="publish") from e
        with f:
            return self.publisher.publish(f, key, content_type)


def describe_failure(exc: PipelineError) -> str:
    cause = exc.__cause__
    if cause is None:
        return str(exc)
    return f"{exc} (caused by {type(cause).__name__}: {cause})"
