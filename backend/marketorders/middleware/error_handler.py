"""
Error handling: domain errors become JSON envelopes, anything unexpected
becomes a logged 500.

Uses pure ASGI middleware (not BaseHTTPMiddleware) to avoid breaking
streaming responses and background tasks.
"""
import json

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from marketorders.core.exceptions import OrderServiceError
from marketorders.core.logging import get_logger

logger = get_logger(__name__)


async def order_service_error_handler(request: Request, exc: OrderServiceError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("Order service failure", error=exc.code, detail=exc.detail, context=exc.context)
    else:
        logger.info("Request rejected", error=exc.code, status=exc.http_status)
    return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(exc.to_dict()))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({
            "error": "validation_failed",
            "detail": "Request validation failed",
            "context": {"errors": exc.errors()},
        }),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderServiceError, order_service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)


class ErrorHandlerMiddleware:
    """
    Pure ASGI error handler that catches unhandled exceptions
    and returns proper JSON 500 responses.

    HTTPException and OrderServiceError never get here; FastAPI's
    exception handlers answer those.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except HTTPException:
            raise
        except Exception as e:
            logger.exception(
                "Unhandled exception",
                error=str(e),
                path=scope.get("path", "unknown"),
                response_started=response_started,
            )
            if response_started:
                # Headers already sent, can't change the response
                raise

            body = json.dumps({
                "error": "internal_error",
                "detail": "Internal server error",
            }).encode("utf-8")

            await send({
                "type": "http.response.start",
                "status": 500,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode()),
                ],
            })
            await send({
                "type": "http.response.body",
                "body": body,
            })
