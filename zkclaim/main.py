"""
Uvicorn launcher for the zkclaim API.

Usage:
  python -m zkclaim.main [--host 0.0.0.0] [--port 8080]
                         [--workers 1] [--reload]
                         [--log-level info]

Environment overrides (if flags not provided):
  HOST, PORT, WORKERS, RELOAD
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Optional

import uvicorn

from .config import load_settings
from .errors import ConfigurationError


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "y", "on")


def main(argv: Optional[list[str]] = None) -> None:
    # Fail fast on a missing relay URL/key before uvicorn spawns workers.
    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"[zkclaim] {e}", file=sys.stderr)
        raise SystemExit(2) from e

    parser = argparse.ArgumentParser(description="Run the zkclaim API (uvicorn)")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"), help="Bind address (default: %(default)s)")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")), help="Port (default: %(default)s)")
    parser.add_argument("--workers", type=int, default=int(os.getenv("WORKERS", "1")), help="Number of workers (default: %(default)s)")
    parser.add_argument("--reload", action="store_true", default=_env_bool("RELOAD", False), help="Enable autoreload (dev only)")
    parser.add_argument("--log-level", default=settings.log_level.lower(), help="Log level for uvicorn (default: %(default)s)")

    args = parser.parse_args(argv)

    if args.reload and args.workers != 1:
        print("[zkclaim] --reload implies --workers=1; overriding.")
        args.workers = 1

    # Factory import string: each worker builds its own settings and components.
    uvicorn.run(
        "zkclaim.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
        workers=args.workers,
    )


if __name__ == "__main__":
    main()
