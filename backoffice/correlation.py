"""
Per-request correlation ids.

Each inbound HTTP call gets a short random id that is kept in a context
variable for the duration of the call, echoed back in ``X-Request-ID`` and
stamped on every log line by :class:`backoffice.logging_setup.RequestIdFilter`.
"""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

REQUEST_ID_HEADER = "X-Request-ID"

logger = logging.getLogger(__name__)

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def get_request_id() -> Optional[str]:
    return _request_id.get()


def install_correlation_middleware(app: FastAPI) -> None:
    """
    Register the HTTP middleware that assigns correlation ids.

    The middleware is also the last line of defence: an exception escaping the
    route and its exception handlers still ends in a failure envelope.
    """

    @app.middleware("http")
    async def assign_request_id(request: Request, call_next):
        request_id = new_request_id()
        token = _request_id.set(request_id)
        request.state.request_id = request_id
        try:
            logger.info(
                "%s %s query=%s auth=%s",
                request.method,
                request.url.path,
                dict(request.query_params),
                "present" if request.headers.get("authorization") else "missing",
            )
            try:
                response = await call_next(request)
            except Exception:
                logger.exception("Unhandled error servicing %s %s", request.method, request.url.path)
                response = JSONResponse(
                    status_code=500,
                    content={"success": False, "error": "Server error"},
                )
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
            return response
        finally:
            _request_id.reset(token)
