from __future__ import annotations

import base64
import secrets

from app.core.errors import EntropyUnavailable, UnsupportedMediaType


MIN_KEY_BYTES = 16
DEFAULT_KEY_BYTES = 32

_EXTENSIONS = {
    "video/mp4": ".mp4",
    "image/jpeg": ".jpg",
    "image/png": ".png",
}


def extension_for(media_type: str) -> str:
    ext = _EXTENSIONS.get(str(media_type or "").strip().lower())
    if not ext:
        raise UnsupportedMediaType(f"no file extension for media type {media_type!r}", stage="derive_key")
    return ext


def random_token(nbytes: int = DEFAULT_KEY_BYTES) -> str:
    if int(nbytes) < MIN_KEY_BYTES:
        raise ValueError(f"storage keys need at least {MIN_KEY_BYTES} random bytes")
    try:
        raw = secrets.token_bytes(int(nbytes))
    except (OSError, NotImplementedError) as e:
        raise EntropyUnavailable("randomness source unavailable", stage="derive_key") from e
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def derive_storage_key(prefix: str, ext: str, *, nbytes: int = DEFAULT_KEY_BYTES) -> str:
    """Build ``"<prefix>/<random><ext>"``.

    ``prefix`` is an aspect class for videos (``landscape``/``portrait``/``other``)
    or ``thumbnails``. Collisions are not checked; the random part carries
    ``8 * nbytes`` bits.
    """
    p = str(getattr(prefix, "value", prefix) or "").strip().strip("/")
    if not p:
        raise ValueError("storage key prefix must not be empty")
    e = str(ext or "")
    if e and not e.startswith("."):
        e = "." + e
    return f"{p}/{random_token(nbytes)}{e}"
