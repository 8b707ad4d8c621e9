from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from ..version import __version__

router = APIRouter(tags=["health"])


@router.get("/api/health", summary="Liveness probe", response_model=None)
def health(request: Request) -> Dict[str, Any]:
    """
    Always 200 while the process serves requests. Reports whether this
    instance runs in aggregation mode (non-zero CHAIN_ID).
    """
    settings = request.app.state.settings
    return {
        "status": "ok",
        "version": __version__,
        "aggregation": settings.aggregation_enabled,
        "targetStatus": settings.target_status.value,
        "now": datetime.now(timezone.utc).isoformat(),
    }
