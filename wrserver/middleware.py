"""Request context middleware for wrserver.

Assigns every HTTP request a ULID, binds it into the log context for the
duration of the request, returns it as ``X-Request-ID`` and writes one access
log line when the response starts.

Written as a plain ASGI middleware (not BaseHTTPMiddleware) so the handlers'
view of the ASGI ``receive`` channel is untouched: ``lookup.call_engine``
relies on seeing ``http.disconnect`` from it.
"""

from __future__ import annotations

import time

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from wrserver.utils.logger import clear_request_id, get_logger, set_request_id
from wrserver.utils.ulid import generate_ulid

logger = get_logger("wrserver.access")

REQUEST_ID_HEADER = b"x-request-id"


class RequestContextMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = generate_ulid()
        set_request_id(request_id)
        start = time.perf_counter()

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((REQUEST_ID_HEADER, request_id.encode("ascii")))
                message = {**message, "headers": headers}
                logger.info(
                    "Request",
                    method=scope["method"],
                    path=scope["path"],
                    status=message["status"],
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            clear_request_id()
