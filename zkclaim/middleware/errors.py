from __future__ import annotations

"""
Exception -> RFC 7807 "problem+json" mappers for FastAPI.

- Produces ``application/problem+json`` for:
    * ZkClaimError subclasses (status/code/details come from the error)
    * Starlette/FastAPI HTTPException
    * RequestValidationError
    * Unhandled exceptions (500)
- Attaches ``request.state.request_id`` when present.
- Never leaks stack traces in responses; logs them instead.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import ZkClaimError
from ..logging import get_logger

PROBLEM_CT = "application/problem+json"

log = get_logger(__name__)

_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def _base_problem(
    request: Request,
    *,
    status: int,
    title: Optional[str] = None,
    detail: str = "",
    type_uri: str = "about:blank",
    code: Optional[str] = None,
    extras: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    prob: Dict[str, Any] = {
        "type": type_uri,
        "title": title or _TITLES.get(status, "Error"),
        "status": status,
        "detail": detail,
        "instance": str(request.url.path),
        "request_id": getattr(request.state, "request_id", "") or "",
    }
    if code:
        prob["code"] = code
    for k, v in (extras or {}).items():
        prob.setdefault(k, v)
    return prob


def _problem_response(status: int, body: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status, content=jsonable_encoder(body), media_type=PROBLEM_CT)


# --------------------------- Handlers ---------------------------


async def _handle_zkclaim_error(request: Request, exc: ZkClaimError) -> JSONResponse:
    problem = exc.to_problem()
    body = _base_problem(
        request,
        status=exc.status_code,
        title=problem["title"],
        detail=problem["detail"],
        type_uri=problem["type"],
        code=exc.code,
        extras={"details": problem["details"]} if "details" in problem else None,
    )
    if exc.status_code >= 500:
        log.error("api_error", status=exc.status_code, code=exc.code, detail=exc.message)
    else:
        log.warning("api_error", status=exc.status_code, code=exc.code, detail=exc.message)
    return _problem_response(exc.status_code, body)


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    status = int(exc.status_code)
    body = _base_problem(request, status=status, detail=str(exc.detail) if exc.detail else "")
    (log.warning if status < 500 else log.error)("http_exception", status=status, detail=body["detail"])
    return _problem_response(status, body)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{k: v for k, v in err.items() if k in ("loc", "msg", "type")} for err in exc.errors()]
    body = _base_problem(
        request,
        status=422,
        detail="Request validation failed.",
        code="validation_error",
        extras={"errors": errors},
    )
    log.warning("validation_error", path=body["instance"], errors=len(errors))
    return _problem_response(422, body)


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    body = _base_problem(
        request,
        status=500,
        detail="An unexpected error occurred. Please retry or report the request_id.",
    )
    log.exception("unhandled_exception", path=body["instance"])
    return _problem_response(500, body)


# --------------------------- Installer ---------------------------


def install_error_handlers(app: FastAPI) -> None:
    """
    Register exception handlers on the given FastAPI app.
    """
    app.add_exception_handler(ZkClaimError, _handle_zkclaim_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected_error)


__all__ = ["install_error_handlers", "PROBLEM_CT"]
