"""
Error taxonomy and the uniform JSON response envelope.

Every failure leaving the API is rendered as
``{"success": false, "error": <message>, "details"?: <diagnostic>}`` with the
HTTP status carried by the error class.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class BackofficeError(Exception):
    """Base class for errors that map onto the failure envelope."""

    status_code = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(BackofficeError):
    """Caller supplied a malformed id or payload. Never retried."""

    status_code = 400


class AuthError(BackofficeError):
    """Credential missing, invalid (401) or insufficient (403)."""

    def __init__(self, message: str, status_code: int = 401, details: Any = None):
        super().__init__(message, details)
        self.status_code = status_code


class NotFoundError(BackofficeError):
    status_code = 404

    def __init__(self, message: str = "Not found", details: Any = None):
        super().__init__(message, details)


class StoreError(BackofficeError):
    """The backing store reported an error."""

    status_code = 500


class UnexpectedError(BackofficeError):
    """Anything the other error classes do not anticipate."""

    status_code = 500


def describe_validation_errors(errors: Iterable[Mapping[str, Any]]) -> list[dict]:
    """Reduce pydantic error entries to ``{"field", "message"}`` pairs."""
    return [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in errors
    ]


def success_envelope(data: Any, pagination: Optional[dict] = None) -> dict:
    body: dict[str, Any] = {"success": True, "data": data}
    if pagination is not None:
        body["pagination"] = pagination
    return jsonable_encoder(body)


def error_envelope(message: str, details: Any = None) -> dict:
    body: dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return jsonable_encoder(body)


def error_response(exc: BackofficeError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.message, exc.details),
    )


async def _handle_backoffice_error(request: Request, exc: BackofficeError):
    logger.warning(
        "%s %s failed with %s (%s): %s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc.status_code,
        exc.message,
    )
    return error_response(exc)


async def _handle_request_validation(request: Request, exc: RequestValidationError):
    logger.warning("Rejected request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content=error_envelope("Invalid request", describe_validation_errors(exc.errors())),
    )


async def _handle_http_exception(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(message),
        headers=getattr(exc, "headers", None),
    )


def install_error_handlers(app: FastAPI) -> None:
    """Render every framework and backoffice failure as an envelope."""
    app.add_exception_handler(BackofficeError, _handle_backoffice_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
