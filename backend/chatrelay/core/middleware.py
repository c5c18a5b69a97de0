"""
Request context, body size guard, and global exception handlers.

Chat routes answer failures with the chat error payload the client
understands; everything else uses the structured ``{error: {...}}`` body.
"""

import time
import uuid
from collections.abc import Callable, Iterable
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from chatrelay.core.errors import (
    AppError,
    ErrorCode,
    ErrorResponse,
    RequestTooLargeError,
    ValidationError,
)
from chatrelay.core.logging import get_logger, request_id_ctx, stream_id_ctx

logger = get_logger(__name__)

CHAT_PATHS = ("/api/chat",)
QUIET_PATHS = frozenset({"/health", "/healthz", "/metrics"})

_HTTP_ERROR_CODES = {
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
    413: ErrorCode.REQUEST_TOO_LARGE,
    429: ErrorCode.RATE_LIMITED,
}


def _json_error(status_code: int, content: dict[str, Any]) -> JSONResponse:
    request_id = request_id_ctx.get()
    headers = {"X-Request-ID": request_id} if request_id else {}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _is_chat_path(path: str, chat_paths: Iterable[str] = CHAT_PATHS) -> bool:
    return any(path == p or path.startswith(p + "/") for p in chat_paths)


def error_response_for(request: Request, error: AppError) -> JSONResponse:
    """Render an AppError in the body shape the route's clients expect."""
    if _is_chat_path(request.url.path):
        return _json_error(error.status_code, error.to_chat_payload())
    return _json_error(error.status_code, error.to_response(request_id_ctx.get()).to_dict())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request ID (incoming X-Request-ID or a fresh one) for logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request_token = request_id_ctx.set(request_id)
        stream_token = stream_id_ctx.set(None)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            # Streaming bodies are still being sent here; this is time to headers.
            log = logger.debug if request.url.path in QUIET_PATHS else logger.info
            log(
                "Request completed",
                data={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return response
        finally:
            request_id_ctx.reset(request_token)
            stream_id_ctx.reset(stream_token)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies whose declared Content-Length exceeds ``max_bytes``."""

    def __init__(self, app: FastAPI, max_bytes: int = 20 * 1024 * 1024):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("content-length")
        if not declared:
            return await call_next(request)

        try:
            length = int(declared)
        except ValueError:
            return error_response_for(
                request, ValidationError("Invalid Content-Length header", {"value": declared})
            )

        if length > self.max_bytes:
            logger.warning(
                "Request too large",
                data={
                    "path": request.url.path,
                    "content_length": length,
                    "max_bytes": self.max_bytes,
                },
            )
            return error_response_for(request, RequestTooLargeError(self.max_bytes))

        return await call_next(request)


def setup_exception_handlers(app: FastAPI) -> None:
    """Install handlers mapping every failure to a JSON error body."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        body = ErrorResponse(
            code=ErrorCode.VALIDATION_ERROR,
            message="Validation error",
            request_id=request_id_ctx.get(),
            details={"errors": exc.errors()},
        )
        return _json_error(422, body.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        _request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        body = ErrorResponse(
            code=_HTTP_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
            message=str(exc.detail) if exc.detail else "HTTP error",
            request_id=request_id_ctx.get(),
        )
        return _json_error(exc.status_code, body.to_dict())

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        logger.warning(
            f"Application error: {exc.message}",
            data={"code": exc.code.value, "provider": exc.provider, "details": exc.details},
        )
        return error_response_for(request, exc)

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            data={"path": request.url.path, "method": request.method},
        )
        body = ErrorResponse(
            code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred",
            request_id=request_id_ctx.get(),
        )
        return _json_error(500, body.to_dict())
