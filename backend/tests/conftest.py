import os
import sys
import shutil
import time
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
# Tests never talk to postgres; keep the import-time engine off psycopg.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db import session as session_module
from app.services.media_tools import GeometryInfo

# Import models so that they are registered in Base.metadata before create_all.
from app.models.user import User
from app.models.video import Video  # noqa: F401
from app.models.security_audit import SecurityAuditEvent  # noqa: F401


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))

    def clear(self):
        self._data.clear()


class FakeS3:
    """Records put/delete calls and signs URLs the way botocore shapes them."""

    def __init__(self, *, fail_put: Exception | None = None):
        self.objects: dict[tuple[str, str], dict] = {}
        self.deleted: list[tuple[str, str]] = []
        self.presigned: list[dict] = []
        self.fail_put = fail_put

    def put_object(self, *, Bucket, Key, Body, ContentType):
        if self.fail_put is not None:
            raise self.fail_put
        data = Body.read() if hasattr(Body, "read") else bytes(Body)
        self.objects[(Bucket, Key)] = {"body": data, "content_type": ContentType}
        return {"ETag": '"fake"'}

    def delete_object(self, *, Bucket, Key):
        self.deleted.append((Bucket, Key))
        self.objects.pop((Bucket, Key), None)
        return {}

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.presigned.append({"operation": operation, "params": dict(Params), "expires_in": ExpiresIn})
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}&X-Amz-Signature=sig"


class FakeToolRunner:
    """Stands in for ffmpeg/ffprobe: remux copies bytes, probe returns fixed geometry."""

    def __init__(self, width: int = 1920, height: int = 1080, *, probe_error: Exception | None = None):
        self.width = width
        self.height = height
        self.probe_error = probe_error
        self.calls: list[tuple[str, Path]] = []
        self.outputs: list[Path] = []

    def remux(self, path):
        path = Path(path)
        self.calls.append(("remux", path))
        out = path.with_name(path.name + ".processing")
        shutil.copyfile(path, out)
        self.outputs.append(out)
        return out

    def probe(self, path):
        self.calls.append(("probe", Path(path)))
        if self.probe_error is not None:
            raise self.probe_error
        return GeometryInfo(width=self.width, height=self.height)


# Configure test DB (SQLite in-memory) at import time so all tests importing
# app.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


# Stub Redis at import time (rate limiting).
_mem_redis = _MemoryRedis()
import app.core.redis_client as redis_client_module

redis_client_module.get_redis = lambda: _mem_redis

import app.core.rate_limit as rate_limit_module
rate_limit_module.get_redis = lambda: _mem_redis


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    _mem_redis.clear()
    yield


@pytest.fixture()
def upload_tmp(tmp_path, monkeypatch):
    from app.core.config import settings

    d = tmp_path / "uploads"
    d.mkdir()
    monkeypatch.setattr(settings, "upload_tmp_dir", str(d))
    return d


@pytest.fixture()
def fake_s3():
    return FakeS3()


@pytest.fixture()
def fake_tools():
    return FakeToolRunner()


@pytest.fixture()
def app_factory(fake_s3, fake_tools, upload_tmp):
    from app.core.config import settings
    from app.main import create_app
    from app.services import providers
    from app.services.storage import AccessSigner, ObjectPublisher

    def _make(*, tools=None, s3=None):
        app = create_app()

        def _get_db_override():
            db = session_module.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        store = s3 or fake_s3
        app.dependency_overrides[session_module.get_db] = _get_db_override
        app.dependency_overrides[providers.get_media_tools] = lambda: tools or fake_tools
        app.dependency_overrides[providers.get_publisher] = lambda: ObjectPublisher(store, settings.s3_bucket)
        app.dependency_overrides[providers.get_signer] = lambda: AccessSigner(
            store, default_expires_seconds=int(settings.video_url_expires_seconds)
        )
        return app

    return _make


@pytest.fixture()
def client(app_factory):
    return TestClient(app_factory())


def make_user(email: str | None = None) -> User:
    with session_module.SessionLocal() as db:
        user = User(email=email or f"user_{uuid.uuid4().hex[:8]}@example.com", password_hash="unused")
        db.add(user)
        db.commit()
        db.refresh(user)
        db.expunge(user)
        return user


def headers_for(user: User) -> dict[str, str]:
    from app.core.security import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id=str(user.id))}"}


@pytest.fixture()
def owner():
    return make_user()


@pytest.fixture()
def auth_headers(owner):
    return headers_for(owner)


@pytest.fixture()
def draft_video(client, auth_headers):
    r = client.post("/api/videos", json={"title": "Boots demo", "description": "a pair of boots"}, headers=auth_headers)
    assert r.status_code == 200
    return r.json()
