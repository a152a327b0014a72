"""Request-body cap enforced while the body is being received.

Upload routes get an absolute byte budget. A declared ``Content-Length`` over
budget is rejected before reading anything; otherwise the ASGI ``receive``
channel is wrapped: once the running total passes the budget the app sees a
disconnect, so an oversized body is never spooled in full, and the 413
envelope replaces whatever the app answered.
"""

from __future__ import annotations

import logging

from fastapi.responses import JSONResponse

from app.core.errors import INPUT_VALIDATION


log = logging.getLogger(__name__)

_TOO_LARGE = {"error_code": INPUT_VALIDATION, "error_message": "upload too large"}


class UploadSizeLimitMiddleware:
    def __init__(self, app, *, limits: dict[str, int]):
        self.app = app
        # Longest prefix wins.
        self.limits = sorted(((str(p), int(n)) for p, n in limits.items()), key=lambda x: len(x[0]), reverse=True)

    def limit_for(self, path: str) -> int | None:
        for prefix, n in self.limits:
            if path.startswith(prefix):
                return n
        return None

    async def __call__(self, scope, receive, send):
        if scope.get("type") != "http" or scope.get("method") not in {"POST", "PUT", "PATCH"}:
            await self.app(scope, receive, send)
            return

        limit = self.limit_for(str(scope.get("path") or ""))
        if limit is None:
            await self.app(scope, receive, send)
            return

        declared = None
        for name, value in scope.get("headers") or []:
            if name == b"content-length":
                try:
                    declared = int(value.decode("latin-1"))
                except ValueError:
                    declared = None
                break

        if declared is not None and declared > limit:
            log.info("upload_limit: rejected declared content-length=%s limit=%s path=%s", declared, limit, scope.get("path"))
            await self._reject(scope, receive, send)
            return

        received = 0
        exceeded = False
        started = False

        async def limited_receive():
            nonlocal received, exceeded
            if exceeded:
                return {"type": "http.disconnect"}
            message = await receive()
            if message.get("type") == "http.request":
                received += len(message.get("body") or b"")
                if received > limit:
                    exceeded = True
                    log.info("upload_limit: aborted body after %s bytes limit=%s path=%s", received, limit, scope.get("path"))
                    # Body parsing sees a disconnect; whatever it answers is replaced below.
                    return {"type": "http.disconnect"}
            return message

        async def guarded_send(message):
            nonlocal started
            if exceeded and not started:
                return
            if message.get("type") == "http.response.start":
                started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, guarded_send)
        except Exception:
            if not exceeded:
                raise
            log.info("upload_limit: dropped app error after cap path=%s", scope.get("path"), exc_info=True)

        if exceeded:
            if started:
                raise RuntimeError("request body over limit after the response had started")
            await self._reject(scope, receive, send)

    async def _reject(self, scope, receive, send) -> None:
        rid = (scope.get("state") or {}).get("request_id")
        response = JSONResponse(
            status_code=413,
            content={"ok": False, **_TOO_LARGE, "request_id": rid},
        )
        await response(scope, receive, send)
