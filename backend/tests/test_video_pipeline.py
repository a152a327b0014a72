import io
import re
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.core.errors import (
    EmptyOutput,
    NoVideoStream,
    OversizedUpload,
    PublishFailure,
    UnsupportedMediaType,
)
from app.services.storage import ObjectPublisher
from app.services.video_pipeline import VideoIngestPipeline
from conftest import FakeS3, FakeToolRunner


MP4 = b"\x00\x00\x00\x18ftypmp42" + b"v" * 4096


def _pipeline(tmp_path, *, tools=None, s3=None, video_max=1 << 20):
    return VideoIngestPipeline(
        tools=tools or FakeToolRunner(),
        publisher=ObjectPublisher(s3 or FakeS3(), "tubely-videos"),
        video_max_bytes=video_max,
        thumbnail_max_bytes=64 * 1024,
        tmp_dir=str(tmp_path),
        chunk_bytes=1024,
    )


def test_ingest_video_end_to_end(tmp_path):
    tools = FakeToolRunner(1920, 1080)
    s3 = FakeS3()

    published = _pipeline(tmp_path, tools=tools, s3=s3).ingest_video(io.BytesIO(MP4), "video/mp4")

    assert re.match(r"^landscape/[A-Za-z0-9_-]+\.mp4$", published.key)
    assert published.bucket == "tubely-videos"
    assert published.content_type == "video/mp4"
    assert s3.objects[("tubely-videos", published.key)]["body"] == MP4
    # Remux first, then probe the remuxed copy.
    assert [c[0] for c in tools.calls] == ["remux", "probe"]
    assert tools.calls[1][1] == tools.outputs[0]
    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize(
    "size,prefix",
    [((1080, 1920), "portrait"), ((1000, 1000), "other"), ((1920, 1088), "landscape")],
)
def test_ingest_video_key_prefix_follows_aspect(tmp_path, size, prefix):
    published = _pipeline(tmp_path, tools=FakeToolRunner(*size)).ingest_video(io.BytesIO(MP4), "video/mp4")
    assert published.key.startswith(prefix + "/")


def test_wrong_type_runs_no_tools(tmp_path):
    tools = FakeToolRunner()
    with pytest.raises(UnsupportedMediaType):
        _pipeline(tmp_path, tools=tools).ingest_video(io.BytesIO(MP4), "video/quicktime")
    assert tools.calls == []
    assert list(tmp_path.iterdir()) == []


def test_oversized_runs_no_tools(tmp_path):
    tools = FakeToolRunner()
    with pytest.raises(OversizedUpload):
        _pipeline(tmp_path, tools=tools, video_max=1000).ingest_video(io.BytesIO(MP4), "video/mp4")
    assert tools.calls == []
    assert list(tmp_path.iterdir()) == []


def test_probe_failure_cleans_every_temp_file(tmp_path):
    tools = FakeToolRunner(probe_error=NoVideoStream("no streams", stage="probe"))
    s3 = FakeS3()
    with pytest.raises(NoVideoStream):
        _pipeline(tmp_path, tools=tools, s3=s3).ingest_video(io.BytesIO(MP4), "video/mp4")
    assert s3.objects == {}
    assert list(tmp_path.iterdir()) == []


def test_remux_failure_cleans_landed_file(tmp_path):
    class _FailingRemux(FakeToolRunner):
        def remux(self, path):
            self.calls.append(("remux", path))
            raise EmptyOutput("empty", stage="remux")

    tools = _FailingRemux()
    with pytest.raises(EmptyOutput):
        _pipeline(tmp_path, tools=tools).ingest_video(io.BytesIO(MP4), "video/mp4")
    assert [c[0] for c in tools.calls] == ["remux"]
    assert list(tmp_path.iterdir()) == []


def test_stream_dropped_midway_publishes_nothing(tmp_path):
    from app.core.errors import IOFailure

    class _Dropped(io.RawIOBase):
        def __init__(self):
            self.sent = 0

        def readable(self):
            return True

        def read(self, n=-1):
            if self.sent >= 3:
                raise ConnectionResetError("client went away")
            self.sent += 1
            return MP4[:1024]

    tools = FakeToolRunner()
    s3 = FakeS3()
    with pytest.raises(IOFailure):
        _pipeline(tmp_path, tools=tools, s3=s3).ingest_video(_Dropped(), "video/mp4")
    assert tools.calls == []
    assert s3.objects == {}
    assert list(tmp_path.iterdir()) == []


def test_zero_dimensions_is_an_error_not_other(tmp_path):
    from app.core.errors import InvalidDimensions

    s3 = FakeS3()
    with pytest.raises(InvalidDimensions):
        _pipeline(tmp_path, tools=FakeToolRunner(0, 1080), s3=s3).ingest_video(io.BytesIO(MP4), "video/mp4")
    assert s3.objects == {}
    assert list(tmp_path.iterdir()) == []


def test_publish_failure_cleans_up(tmp_path):
    from botocore.exceptions import ClientError

    s3 = FakeS3(fail_put=ClientError({"Error": {"Code": "SlowDown", "Message": "slow"}}, "PutObject"))
    with pytest.raises(PublishFailure):
        _pipeline(tmp_path, s3=s3).ingest_video(io.BytesIO(MP4), "video/mp4")
    assert list(tmp_path.iterdir()) == []


def test_ingest_thumbnail(tmp_path):
    tools = FakeToolRunner()
    s3 = FakeS3()
    png = b"\x89PNG\r\n\x1a\n" + b"p" * 100

    published = _pipeline(tmp_path, tools=tools, s3=s3).ingest_thumbnail(io.BytesIO(png), "image/png")

    assert re.match(r"^thumbnails/[A-Za-z0-9_-]+\.png$", published.key)
    assert s3.objects[("tubely-videos", published.key)] == {"body": png, "content_type": "image/png"}
    assert tools.calls == []
    assert list(tmp_path.iterdir()) == []


def test_ingest_thumbnail_rejects_video(tmp_path):
    with pytest.raises(UnsupportedMediaType):
        _pipeline(tmp_path).ingest_thumbnail(io.BytesIO(MP4), "video/mp4")


def test_concurrent_ingests_do_not_share_temp_files(tmp_path):
    class _RecordingTools(FakeToolRunner):
        def __init__(self):
            super().__init__()
            self.lock = threading.Lock()
            self.barrier = threading.Barrier(2, timeout=5)

        def remux(self, path):
            # Both requests are mid-pipeline at the same time.
            self.barrier.wait()
            with self.lock:
                return super().remux(path)

    tools = _RecordingTools()
    s3 = FakeS3()
    pipeline = _pipeline(tmp_path, tools=tools, s3=s3)
    bodies = [MP4 + b"A" * 10, MP4 + b"B" * 20]

    with ThreadPoolExecutor(max_workers=2) as ex:
        results = list(ex.map(lambda b: pipeline.ingest_video(io.BytesIO(b), "video/mp4"), bodies))

    keys = {r.key for r in results}
    assert len(keys) == 2
    remuxed_inputs = [c[1] for c in tools.calls if c[0] == "remux"]
    assert len(set(remuxed_inputs)) == 2
    stored = {s3.objects[("tubely-videos", r.key)]["body"] for r in results}
    assert stored == set(bodies)
    assert list(tmp_path.iterdir()) == []
