"""Land inbound upload bodies as local temp files.

A landed file belongs to whoever holds the ``land_stream`` context; it is
removed when the context exits, whichever way it exits.
"""

from __future__ import annotations

import logging
import os
import pathlib
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO

from app.core.errors import IOFailure, OversizedUpload, UnsupportedMediaType


log = logging.getLogger(__name__)

VIDEO_MEDIA_TYPES = frozenset({"video/mp4"})
THUMBNAIL_MEDIA_TYPES = frozenset({"image/jpeg", "image/png"})

TEMP_PREFIX = "tubely-upload-"
DEFAULT_CHUNK_BYTES = 1 << 20


@dataclass(frozen=True)
class LandedFile:
    path: pathlib.Path
    size: int
    media_type: str


def parse_media_type(header: str | None) -> str:
    raw = str(header or "").split(";", 1)[0].strip().lower()
    if not raw or raw.count("/") != 1 or any(ch.isspace() for ch in raw) or raw.startswith("/") or raw.endswith("/"):
        raise UnsupportedMediaType(f"could not determine file type from {header!r}", stage="land")
    return raw


def remove_quietly(path: pathlib.Path | str | None) -> None:
    if not path:
        return
    try:
        pathlib.Path(path).unlink(missing_ok=True)
    except OSError:
        log.warning("landing: failed to remove temp file %s", str(path), exc_info=True)


def copy_capped(src: BinaryIO, dst: BinaryIO, *, max_bytes: int, chunk_bytes: int = DEFAULT_CHUNK_BYTES) -> int:
    """Copy ``src`` into ``dst``; stop with ``OversizedUpload`` once more than ``max_bytes`` were read."""
    total = 0
    step = max(1, int(chunk_bytes))
    while True:
        # Read at most one byte past the cap so an exact-size body still passes.
        want = min(step, int(max_bytes) - total + 1)
        chunk = src.read(want)
        if not chunk:
            return total
        total += len(chunk)
        if total > int(max_bytes):
            raise OversizedUpload(f"upload exceeded {int(max_bytes)} bytes", stage="land")
        dst.write(chunk)


@contextmanager
def land_stream(
    stream: BinaryIO,
    *,
    content_type: str | None,
    allowed_types: frozenset[str] | set[str],
    max_bytes: int,
    suffix: str = "",
    tmp_dir: str | None = None,
    chunk_bytes: int = DEFAULT_CHUNK_BYTES,
) -> Iterator[LandedFile]:
    media_type = parse_media_type(content_type)
    if media_type not in allowed_types:
        raise UnsupportedMediaType(f"media type {media_type} not in {sorted(allowed_types)}", stage="land")

    try:
        fd, name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=suffix, dir=tmp_dir or None)
    except OSError as e:
        raise IOFailure("could not create temp file", stage="land") from e

    path = pathlib.Path(name)
    try:
        try:
            with os.fdopen(fd, "wb") as out:
                size = copy_capped(stream, out, max_bytes=max_bytes, chunk_bytes=chunk_bytes)
                out.flush()
                os.fsync(out.fileno())
        except OSError as e:
            raise IOFailure(f"could not copy upload to {path}", stage="land") from e

        log.info("landing: stored %s bytes media_type=%s", size, media_type)
        yield LandedFile(path=path, size=size, media_type=media_type)
    finally:
        remove_quietly(path)
