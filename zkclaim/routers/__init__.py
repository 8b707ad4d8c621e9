"""
HTTP routes. ``build_router()`` aggregates them for the app factory.
"""

from __future__ import annotations

from fastapi import APIRouter

from .claims import router as claims_router
from .health import router as health_router


def build_router() -> APIRouter:
    root = APIRouter()
    root.include_router(health_router)
    root.include_router(claims_router)
    return root


__all__ = ["build_router"]
