from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import BinaryIO

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings, settings as default_settings
from app.core.errors import PublishFailure, SigningFailure


log = logging.getLogger(__name__)

REFERENCE_SEPARATOR = ","


def get_s3_client(*, settings: Settings | None = None, endpoint_url: str | None = None):
    cfg = settings or default_settings
    ep = (endpoint_url or "").strip() or None
    # For AWS S3, endpoint_url must be None.
    # For S3-compatible providers (MinIO/R2/YC), endpoint_url is required.
    return boto3.client(
        "s3",
        endpoint_url=ep or (str(cfg.s3_endpoint_url or "").strip() or None),
        aws_access_key_id=cfg.s3_access_key_id,
        aws_secret_access_key=cfg.s3_secret_access_key,
        region_name=cfg.s3_region_name,
        config=Config(
            signature_version="s3v4",
            connect_timeout=float(cfg.s3_connect_timeout_seconds),
            read_timeout=float(cfg.s3_read_timeout_seconds),
            retries={
                "max_attempts": int(cfg.s3_max_attempts),
                "mode": "standard",
            },
            max_pool_connections=int(cfg.s3_max_pool_connections),
            s3={
                "addressing_style": str(cfg.s3_addressing_style or "path"),
            },
        ),
    )


def get_presign_client(*, settings: Settings | None = None):
    cfg = settings or default_settings
    pub = (cfg.s3_public_endpoint_url or "").strip()
    # Presign client does not contact S3; endpoint_url affects only the signed host.
    return get_s3_client(settings=cfg, endpoint_url=pub or cfg.s3_endpoint_url)


def ensure_bucket_exists(s3, *, settings: Settings | None = None) -> None:
    cfg = settings or default_settings
    try:
        s3.head_bucket(Bucket=cfg.s3_bucket)
        return
    except ClientError:
        env = (cfg.app_env or "").strip().lower()
        # Never auto-create in production: wrong account/region would go unnoticed.
        if env in {"prod", "production"}:
            raise

    # AWS requires LocationConstraint for non-us-east-1.
    region = str(cfg.s3_region_name or "").strip() or "us-east-1"
    is_aws = not str(cfg.s3_endpoint_url or "").strip()
    log.info("storage: creating bucket %s", cfg.s3_bucket)
    if is_aws and region != "us-east-1":
        s3.create_bucket(
            Bucket=cfg.s3_bucket,
            CreateBucketConfiguration={"LocationConstraint": region},
        )
    else:
        s3.create_bucket(Bucket=cfg.s3_bucket)


@dataclass(frozen=True)
class PublishedObject:
    bucket: str
    key: str
    content_type: str | None = None

    @property
    def reference(self) -> str:
        return f"{self.bucket}{REFERENCE_SEPARATOR}{self.key}"


@dataclass(frozen=True)
class SignedAccess:
    url: str
    expires_at: datetime


def parse_reference(reference: str | None) -> PublishedObject:
    """Turn a persisted ``"<bucket>,<key>"`` value back into a ``PublishedObject``."""
    raw = str(reference or "").strip()
    bucket, sep, key = raw.partition(REFERENCE_SEPARATOR)
    bucket = bucket.strip()
    key = key.strip()
    if not sep or not bucket or not key:
        raise SigningFailure("malformed object reference", stage="sign")
    return PublishedObject(bucket=bucket, key=key)


class ObjectPublisher:
    def __init__(self, s3, bucket: str):
        self.s3 = s3
        self.bucket = str(bucket)

    def publish(self, body: BinaryIO, key: str, content_type: str) -> PublishedObject:
        # A single PUT: S3 exposes the object only once the whole body arrived.
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise PublishFailure(f"put_object failed for key {key}: {e}", stage="publish") from e
        log.info("storage: published bucket=%s key=%s content_type=%s", self.bucket, key, content_type)
        return PublishedObject(bucket=self.bucket, key=key, content_type=content_type)

    def remove(self, obj: PublishedObject) -> bool:
        """Best-effort delete; a leftover object only costs storage."""
        try:
            self.s3.delete_object(Bucket=obj.bucket, Key=obj.key)
        except (ClientError, BotoCoreError):
            log.exception("storage: delete_object failed bucket=%s key=%s", obj.bucket, obj.key)
            return False
        return True


class AccessSigner:
    def __init__(self, presign_s3, *, default_expires_seconds: int = 300):
        self.presign_s3 = presign_s3
        self.default_expires_seconds = int(default_expires_seconds)

    def sign(self, reference: str | PublishedObject, *, expires_seconds: int | None = None) -> SignedAccess:
        obj = reference if isinstance(reference, PublishedObject) else parse_reference(reference)
        ttl = int(expires_seconds if expires_seconds is not None else self.default_expires_seconds)
        if ttl <= 0:
            raise SigningFailure(f"non-positive expiry {ttl}", stage="sign")

        now = datetime.now(timezone.utc)
        try:
            url = self.presign_s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": obj.bucket, "Key": obj.key},
                ExpiresIn=ttl,
            )
        except (ClientError, BotoCoreError) as e:
            raise SigningFailure(f"presign failed for key {obj.key}: {e}", stage="sign") from e
        return SignedAccess(url=str(url), expires_at=now + timedelta(seconds=ttl))


def build_publisher(*, settings: Settings | None = None) -> ObjectPublisher:
    cfg = settings or default_settings
    return ObjectPublisher(get_s3_client(settings=cfg), cfg.s3_bucket)


def build_signer(*, settings: Settings | None = None) -> AccessSigner:
    cfg = settings or default_settings
    return AccessSigner(get_presign_client(settings=cfg), default_expires_seconds=int(cfg.video_url_expires_seconds))
