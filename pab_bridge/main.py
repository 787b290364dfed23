import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import bridge, health
from .config import settings
from .core.bridge.runtime import BridgeRuntime, runtime_from_settings
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware

logger = logging.getLogger(__name__)


def create_app(
    runtime: Optional[BridgeRuntime] = None,
    start_watcher: bool = True,
    admin_api_key: Optional[str] = None,
) -> FastAPI:
    """Build the relayer API.

    Without an explicit runtime one is built from settings at startup, when
    the gateway is configured. Owner endpoints need ``admin_api_key`` (or the
    configured setting) and are disabled without one.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = app.state.runtime
        if active is None and settings.has_gateway:
            active = runtime_from_settings(settings)
            app.state.runtime = active
        if active is not None and start_watcher and settings.relayer_enabled:
            await active.start()
        elif active is None:
            logger.warning("Gateway not configured; serving without a bridge runtime")
        try:
            yield
        finally:
            if active is not None:
                await active.stop()

    app = FastAPI(
        title="PAB Bridge Relayer",
        description="Reconciliation engine between the PAB EVM gateway and the XRP Ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    if admin_api_key is None and settings.has_admin_key:
        admin_api_key = settings.admin_api_key.get_secret_value()
    app.state.admin_api_key = admin_api_key

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(bridge.router, tags=["Bridge"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "PAB Bridge Relayer",
            "version": __version__,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    setup_logging()
    uvicorn.run(
        "pab_bridge.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )
