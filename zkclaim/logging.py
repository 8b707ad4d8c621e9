from __future__ import annotations

"""
Structured logging setup for zkclaim.

This module configures **structlog** + the stdlib ``logging`` package so that:
- All logs (including uvicorn / FastAPI / httpx) are emitted as structured JSON
  by default (or as a pretty console renderer in dev).
- Context variables (claim id, role, job id) bound by the orchestrator are
  merged into each event.
- Relay API keys never reach the output.

Quick start
-----------
    from zkclaim.logging import setup_logging, get_logger

    setup_logging(level=settings.log_level, log_format=settings.log_format)
    log = get_logger(__name__)
    log.info("claim_started", claim_id=claim_id)
"""

import logging
import re
from typing import Any, Dict, Iterable, Optional

import structlog
from structlog.contextvars import merge_contextvars
from structlog.processors import JSONRenderer

# ------------------------------ Redaction ------------------------------------


REDACT_KEYS = {"authorization", "api_key", "apikey", "relayer_key", "relay_key", "secret", "token"}

# Relay URLs embed the API key as a path segment: /<endpoint>/<key>[/<job>]
_KEY_IN_URL = re.compile(r"/(register-vk|submit-proof|job-status)/[^/\s\"']+")


def _redact_secrets(_: logging.Logger, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for k in list(event_dict.keys()):
        v = event_dict[k]
        if k.lower() in REDACT_KEYS and v is not None:
            event_dict[k] = "***"
        elif isinstance(v, str) and "/" in v:
            event_dict[k] = _KEY_IN_URL.sub(r"/\1/***", v)
    return event_dict


# ------------------------------ Setup ----------------------------------------


def _base_processors(service_name: str) -> Iterable:
    yield structlog.stdlib.add_log_level
    yield structlog.processors.TimeStamper(fmt="iso", utc=True)
    yield merge_contextvars
    yield structlog.processors.StackInfoRenderer()
    yield structlog.processors.format_exc_info
    yield _redact_secrets
    yield structlog.processors.UnicodeDecoder()

    def _ensure_service(_: logging.Logger, __: str, ev: Dict[str, Any]) -> Dict[str, Any]:
        ev.setdefault("service", service_name)
        return ev

    yield _ensure_service


def setup_logging(
    *,
    service_name: str = "zkclaim",
    level: str | int = "INFO",
    log_format: str = "json",
) -> None:
    """
    Configure structlog + stdlib logging. Call once at process start with the
    values from :class:`zkclaim.config.Settings`.
    """
    processors = list(_base_processors(service_name))

    if log_format.lower() == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=True, sort_keys=False)
    else:
        renderer = JSONRenderer(sort_keys=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                *processors,
            ],
        )
    )

    root = logging.getLogger()
    root.setLevel(level if isinstance(level, int) else level.upper())
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = [handler]
        lg.propagate = False

    # httpx logs full request URLs at INFO, and relay URLs carry the API key.
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Return a lazy structlog logger named after ``name``.

    Module-level loggers are created at import time, before ``setup_logging``
    runs; the proxy resolves the configuration on each call.
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


# ------------------------------ Context helpers -------------------------------


def bind_claim_context(**kv: Any) -> None:
    """
    Bind claim-scoped key/value pairs (claim_id, role, job_id) into the
    structlog contextvars store. Each asyncio task has its own copy.
    """
    structlog.contextvars.bind_contextvars(**kv)


def clear_claim_context(*keys: str) -> None:
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


__all__ = [
    "setup_logging",
    "get_logger",
    "bind_claim_context",
    "clear_claim_context",
]
