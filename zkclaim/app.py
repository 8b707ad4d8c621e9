from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .adapters.prover import ProofGenerator, SnarkjsProver
from .adapters.relay import RelayClient, RelayConfig
from .config import Settings, load_settings
from .logging import get_logger, setup_logging
from .middleware.errors import install_error_handlers
from .middleware.request_id import install_request_id_middleware
from .routers import build_router
from .services.orchestrator import ClaimOrchestrator
from .storage.receipts import AggregationReceiptStore
from .version import __version__

log = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    App lifespan: open the relay connection pool, close it on shutdown.
    """
    settings: Settings = app.state.settings
    relay: RelayClient = app.state.relay
    await relay.start()
    log.info(
        "service_started",
        version=__version__,
        aggregation=settings.aggregation_enabled,
        target_status=settings.target_status.value,
    )
    try:
        yield
    finally:
        await relay.close()
        log.info("service_stopped")


def create_app(
    settings: Optional[Settings] = None,
    *,
    prover: Optional[ProofGenerator] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    FastAPI factory. Builds the claim components from ``settings`` (loaded
    from the environment when omitted) and mounts the routes.

    Components are created here rather than in the lifespan so that in-process
    test transports, which do not run lifespan events, see a wired app; the
    relay client opens its pool lazily on first use.
    """
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(level=settings.log_level, log_format=settings.log_format)

    relay = RelayClient(RelayConfig.from_settings(settings))
    receipts = AggregationReceiptStore.from_settings(settings)
    orchestrator = ClaimOrchestrator.from_settings(
        settings,
        relay=relay,
        prover=prover or SnarkjsProver.from_settings(settings),
        receipts=receipts,
    )

    app = FastAPI(title="zkclaim", version=__version__, lifespan=_lifespan)
    app.state.settings = settings
    app.state.relay = relay
    app.state.receipts = receipts
    app.state.orchestrator = orchestrator

    install_request_id_middleware(app)
    install_error_handlers(app)
    app.include_router(build_router())
    return app


__all__ = ["create_app"]
