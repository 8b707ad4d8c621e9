from __future__ import annotations

"""
Request ID middleware.

- Propagates an inbound ``X-Request-Id`` or generates one.
- Exposes it as ``request.state.request_id`` and echoes it on the response.
- Binds it into structlog contextvars for the duration of the request, so
  orchestrator events carry the request that triggered them.
"""

import re
import uuid

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, unbind_contextvars

REQUEST_ID_HEADER = "X-Request-Id"

_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def _inbound_or_new(value: str | None) -> str:
    if value and _SAFE_ID.match(value):
        return value
    return uuid.uuid4().hex


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        rid = _inbound_or_new(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = rid
        bind_contextvars(request_id=rid)
        try:
            response = await call_next(request)
        finally:
            unbind_contextvars("request_id")
        response.headers[REQUEST_ID_HEADER] = rid
        return response


def install_request_id_middleware(app: FastAPI) -> None:
    app.add_middleware(RequestIdMiddleware)


__all__ = ["RequestIdMiddleware", "install_request_id_middleware", "REQUEST_ID_HEADER"]
