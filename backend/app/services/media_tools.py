"""ffprobe/ffmpeg invocations used by the upload pipeline.

Both tools run as blocking child processes. The pipeline only depends on the
``MediaToolRunner`` protocol so tests can swap in a fake runner.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any, Protocol

from app.core.errors import EmptyOutput, InvalidDimensions, NoVideoStream, ProbeToolFailure, RemuxToolFailure


log = logging.getLogger(__name__)

REMUX_SUFFIX = ".processing"
STDERR_TAIL_CHARS = 4000


@dataclass(frozen=True)
class GeometryInfo:
    width: int
    height: int


class MediaToolRunner(Protocol):
    def probe(self, path: pathlib.Path) -> GeometryInfo: ...

    def remux(self, path: pathlib.Path) -> pathlib.Path: ...


def _tail(text: str | bytes | None, limit: int = STDERR_TAIL_CHARS) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    s = text.strip()
    return s[-limit:] if len(s) > limit else s


def primary_geometry(payload: Any) -> GeometryInfo:
    """Pick width/height of the primary visual stream from ``ffprobe -show_streams`` JSON."""
    if not isinstance(payload, dict):
        raise ProbeToolFailure("ffprobe output is not a JSON object", stage="probe")
    streams = payload.get("streams")
    if streams is None:
        streams = []
    if not isinstance(streams, list):
        raise ProbeToolFailure("ffprobe output has malformed streams", stage="probe")
    streams = [s for s in streams if isinstance(s, dict)]
    if not streams:
        raise NoVideoStream("ffprobe reported zero streams", stage="probe")

    chosen = next((s for s in streams if s.get("codec_type") == "video"), None)
    if chosen is None:
        chosen = next((s for s in streams if "width" in s and "height" in s), streams[0])

    try:
        width = int(chosen.get("width") or 0)
        height = int(chosen.get("height") or 0)
    except (TypeError, ValueError) as e:
        raise ProbeToolFailure("ffprobe reported non-numeric dimensions", stage="probe") from e

    if width <= 0 or height <= 0:
        raise InvalidDimensions(f"primary stream has width={width} height={height}", stage="probe")
    return GeometryInfo(width=width, height=height)


class FFmpegToolRunner:
    """ffprobe/ffmpeg backed ``MediaToolRunner``."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe", timeout_seconds: float | None = None):
        """Initialize runner.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            timeout_seconds: Upper bound for a single tool run, None for no limit
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings) -> "FFmpegToolRunner":
        return cls(
            ffmpeg_path=str(settings.ffmpeg_path),
            ffprobe_path=str(settings.ffprobe_path),
            timeout_seconds=float(settings.media_tool_timeout_seconds) or None,
        )

    def build_probe_command(self, path: pathlib.Path) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_streams",
            str(path),
        ]

    def build_remux_command(self, path: pathlib.Path, output_path: pathlib.Path) -> list[str]:
        return [
            self.ffmpeg_path,
            "-y",
            "-i", str(path),
            # Stream copy, no re-encode.
            "-c", "copy",
            "-movflags", "faststart",
            "-f", "mp4",
            str(output_path),
        ]

    def probe(self, path: pathlib.Path) -> GeometryInfo:
        """Get width/height of the primary video stream.

        Args:
            path: Local media file

        Returns:
            GeometryInfo of the first video stream
        """
        cmd = self.build_probe_command(path)
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeToolFailure(f"ffprobe could not run: {e}", stage="probe") from e

        if result.returncode != 0:
            log.warning("ffprobe exited with %s: %s", result.returncode, _tail(result.stderr))
            raise ProbeToolFailure(f"ffprobe exited with status {result.returncode}", stage="probe")

        try:
            payload = json.loads(result.stdout or "")
        except json.JSONDecodeError as e:
            raise ProbeToolFailure("ffprobe produced unparseable output", stage="probe") from e

        geometry = primary_geometry(payload)
        log.info("ffprobe: width=%s height=%s", geometry.width, geometry.height)
        return geometry

    def remux(self, path: pathlib.Path) -> pathlib.Path:
        """Move the container index to the front of the file without re-encoding.

        Args:
            path: Local mp4 file, left untouched

        Returns:
            Path of the new fast-start file, owned by the caller
        """
        src = pathlib.Path(path)
        output_path = src.with_name(src.name + REMUX_SUFFIX)
        cmd = self.build_remux_command(src, output_path)
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            _discard(output_path)
            raise RemuxToolFailure(f"ffmpeg could not run: {e}", stage="remux") from e

        if result.returncode != 0:
            _discard(output_path)
            stderr = _tail(result.stderr)
            log.warning("ffmpeg exited with %s: %s", result.returncode, stderr)
            raise RemuxToolFailure(f"ffmpeg exited with status {result.returncode}", stderr=stderr, stage="remux")

        try:
            size = output_path.stat().st_size
        except OSError as e:
            raise EmptyOutput("ffmpeg produced no output file", stage="remux") from e
        if size == 0:
            _discard(output_path)
            raise EmptyOutput("ffmpeg produced an empty file", stage="remux")

        log.info("ffmpeg: remuxed for fast start bytes=%s", size)
        return output_path


def _discard(path: pathlib.Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        log.warning("media_tools: failed to remove %s", str(path), exc_info=True)


def missing_media_tools(*paths: str) -> list[str]:
    out: list[str] = []
    for p in paths:
        p = str(p or "").strip()
        if not p:
            continue
        if os.path.sep in p:
            if not os.access(p, os.X_OK):
                out.append(p)
        elif shutil.which(p) is None:
            out.append(p)
    return out
