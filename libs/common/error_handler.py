"""Consistent JSON error responses across services.

Services raise ``AppError`` subclasses from their domain layer; routers stay
free of try/except boilerplate and every error body has the same envelope:

    {"success": false, "error": "...", "code": "...", "timestamp": "..."}
"""

from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from libs.common.datetime_utils import isoformat_z, utc_now
from libs.common.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "bad_request"
    message: str = "Bad request"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


def error_body(
    message: str,
    code: Optional[str] = None,
    timestamp: Optional[str] = None,
    **extra: Any,
) -> dict:
    body = {
        "success": False,
        "error": message,
        "timestamp": timestamp or isoformat_z(utc_now()),
    }
    if code:
        body["code"] = code
    body.update(extra)
    return body


def error_response(
    status_code: int,
    message: str,
    code: Optional[str] = None,
    timestamp: Optional[str] = None,
    **extra: Any,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(message, code, timestamp, **extra),
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.info(
        "%s %s -> %d %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.code,
    )
    return error_response(exc.status_code, exc.message, exc.code)


def add_exception_handlers(app: FastAPI) -> None:
    """Register the shared exception handlers on a FastAPI app."""
    app.add_exception_handler(AppError, app_error_handler)
