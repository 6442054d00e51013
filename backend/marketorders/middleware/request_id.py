"""
Request ID middleware for tracing.

Uses pure ASGI middleware (not BaseHTTPMiddleware) so the request-scoped
contextvars reach the route handlers and the engine's log lines.
"""
import uuid

import structlog
from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = b"x-request-id"


def _incoming_request_id(scope: Scope) -> str | None:
    for name, value in scope.get("headers", []):
        if name == REQUEST_ID_HEADER:
            return value.decode("latin-1")[:64] or None
    return None


class RequestIdMiddleware:
    """
    Tags each HTTP request with an id (taken from X-Request-ID or generated),
    binds it to the structlog context and echoes it in the response.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_request_id(scope) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((REQUEST_ID_HEADER, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            method=scope.get("method"),
            path=scope.get("path"),
        ):
            await self.app(scope, receive, send_with_request_id)
