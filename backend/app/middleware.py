"""Request ID + access log middleware.

Pure ASGI middleware (not BaseHTTPMiddleware) so CV downloads and
background analysis tasks are not buffered behind it.

A client-supplied X-Request-ID is kept when it looks like an id, so the
frontend can correlate its own logs; otherwise an 8-char id is generated.
"""

import re
import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.logger import logger
from app.core.request_context import developer_id_var, request_id_var

_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9-]{8,64}$")
_QUIET_PATHS = {"/api/health"}


def _request_id(scope: Scope) -> str:
    supplied = Headers(scope=scope).get("x-request-id", "")
    if _CLIENT_ID_RE.match(supplied):
        return supplied
    return uuid.uuid4().hex[:8]


class RequestIdMiddleware:
    """Tag each request with an id and log one line per response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        rid = _request_id(scope)
        request_id_var.set(rid)
        developer_id_var.set("-")
        scope.setdefault("state", {})["request_id"] = rid
        started = time.perf_counter()
        status_code = 500

        async def send_with_rid(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers.append("X-Request-ID", rid)
            await send(message)

        try:
            await self.app(scope, receive, send_with_rid)
        finally:
            if scope["path"] not in _QUIET_PATHS:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.info(f"{scope['method']} {scope['path']} → {status_code} ({elapsed_ms:.0f}ms)")
