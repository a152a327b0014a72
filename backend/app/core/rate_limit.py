from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from redis.exceptions import RedisError

from app.core.redis_client import get_redis
from app.core.security_audit_log import client_ip


@dataclass(frozen=True)
class RateLimit:
    key: str
    limit: int
    window_seconds: int


def rate_limit(*, key_prefix: str, limit: int, window_seconds: int):
    async def _dep(request: Request) -> RateLimit:
        r = get_redis()
        ip = client_ip(request) or "unknown"
        key = f"rl:{key_prefix}:{request.method}:{request.url.path}:{ip}"

        try:
            current = r.incr(key)
            if current == 1:
                r.expire(key, int(window_seconds))
        except RedisError:
            # Fail open: uploads keep working while redis is down.
            return RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds))

        if int(current) > int(limit):
            ttl = r.ttl(key)
            retry_after = int(ttl) if ttl and ttl > 0 else int(window_seconds)
            raise HTTPException(
                status_code=429,
                detail="rate limit exceeded",
                headers={"Retry-After": str(retry_after)},
            )

        return RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds))

    return Depends(_dep)
