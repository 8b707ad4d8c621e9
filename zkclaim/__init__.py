"""
zkclaim
=======

Two-phase (doctor → patient) zero-knowledge claim orchestrator.

Proofs are generated locally, their verification keys are registered once with
an external verification relay, the proofs are submitted to that relay and the
resulting jobs are polled until the relay reports them finalized (or
aggregated for cross-chain publication).

This package exposes:

- ``__version__``: semantic version string
- ``build_app()``: convenience creator for a configured FastAPI app

Prefer importing submodules directly for specific concerns:
``zkclaim.config``, ``zkclaim.services.orchestrator``,
``zkclaim.adapters.relay``, etc.
"""

from __future__ import annotations

from .version import __version__

__all__ = ["__version__", "build_app"]


def build_app():
    """
    Create and return a fully configured FastAPI application.

    Importing lazily avoids importing FastAPI when consumers only need the
    orchestrator or version metadata.
    """
    from .app import create_app

    return create_app()
