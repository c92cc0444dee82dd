# feedsync/middleware/error_handler.py
# Maps sync, cache and batch errors onto one JSON error envelope.
# Storage outages carry a Retry-After hint; query failures report their kind.

import logging
import traceback
from typing import Callable, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from feedsync.constants import STORAGE_RETRY_AFTER_SECONDS, SYNC_RETRY_BASE_SECONDS
from feedsync.errors import AppError, ErrorKind, QueryError, StorageError
from feedsync.utils.logger import log_exception

logger = logging.getLogger(__name__)


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    details: dict = None,
    request_id: str = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """Create a standardized JSON error response."""
    content = {"error": {"code": error_code, "message": message}}
    if details:
        content["error"]["details"] = details
    if request_id:
        content["error"]["request_id"] = request_id
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def app_error_response(exc: AppError, request_id: str = None) -> JSONResponse:
    """Envelope for a domain error, with the extras its type calls for."""
    details = dict(exc.details)
    headers = None
    if isinstance(exc, QueryError):
        details["kind"] = exc.kind.value
        if exc.kind is ErrorKind.USER_NOT_FOUND:
            # the user record is still being created; retry shortly
            headers = {"Retry-After": str(int(SYNC_RETRY_BASE_SECONDS))}
    elif isinstance(exc, StorageError):
        headers = {"Retry-After": str(STORAGE_RETRY_AFTER_SECONDS)}
    return create_error_response(
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
        details=details,
        request_id=request_id,
        headers=headers,
    )


def internal_error_response(exc: Exception, request_id: str = None, debug: bool = False) -> JSONResponse:
    details = None
    if debug:
        details = {"type": type(exc).__name__, "traceback": traceback.format_exc()}
    return create_error_response(
        error_code="INTERNAL_ERROR",
        message="An internal error occurred. Please try again later.",
        status_code=500,
        details=details,
        request_id=request_id,
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turns exceptions escaping a route into the error envelope."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(id(request)))
        log_extra = {"request_id": request_id, "path": request.url.path}

        try:
            return await call_next(request)

        except AppError as e:
            if isinstance(e, StorageError):
                logger.error(f"storage unavailable: {e.message}", extra=log_extra)
            else:
                logger.warning(f"{e.error_code}: {e.message}", extra=log_extra)
            return app_error_response(e, request_id)

        except HTTPException as e:
            logger.warning(f"HTTP {e.status_code}: {e.detail}", extra=log_extra)
            return create_error_response("HTTP_ERROR", str(e.detail), e.status_code, request_id=request_id)

        except Exception as e:
            log_exception(e, context=f"Unhandled error on {request.url.path}")
            logger.error(f"unhandled {type(e).__name__}: {e}", extra=log_extra, exc_info=True)
            return internal_error_response(e, request_id, debug=self.debug)


def setup_exception_handlers(app):
    """Register the same mapping as FastAPI exception handlers."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return app_error_response(exc, request.headers.get("X-Request-ID"))

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return create_error_response("HTTP_ERROR", str(exc.detail), exc.status_code)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        log_exception(exc, context=f"Unhandled error on {request.url.path}")
        return internal_error_response(exc, request.headers.get("X-Request-ID"))
