"""Main FastAPI application for the Consent Gateway.

Sets up the application with all routes, middleware and the lifespan that
builds the gateway on startup and releases every ledger session on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from consent_gateway.api.middleware import setup_middleware
from consent_gateway.api.routes import access, admin, auth, doctors, health, patients
from consent_gateway.infrastructure.logging_config import setup_logging
from consent_gateway.infrastructure.settings import APP_VERSION, Settings, settings as default_settings
from consent_gateway.main import Gateway, build_gateway

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Optional[Settings] = None,
    gateway_factory: Optional[Callable[[], Gateway]] = None,
) -> FastAPI:
    """Create the API application.

    Parameters:
        app_settings: Settings to build the gateway from (module settings by default)
        gateway_factory: Builds the gateway instead of `build_gateway(app_settings)`
    """
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{app_settings.app_name} API starting up...")
        gateway = gateway_factory() if gateway_factory else build_gateway(app_settings)
        app.state.gateway = gateway
        logger.info("API documentation available at /api/docs")
        try:
            yield
        finally:
            logger.info(f"{app_settings.app_name} API shutting down...")
            await gateway.aclose()
            app.state.gateway = None

    app = FastAPI(
        title=f"{app_settings.app_name} API",
        description="Access delegation and multi-identity ledger gateway",
        version=APP_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    if app_settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Process-Time", "X-Request-ID"],
        )

    setup_middleware(app)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(patients.router)
    app.include_router(doctors.router)
    app.include_router(access.router)
    app.include_router(admin.router)

    @app.get("/")
    async def root():
        return {
            "message": f"{app_settings.app_name} API",
            "version": APP_VERSION,
            "docs": "/api/docs",
            "health": "/api/health",
        }

    return app


setup_logging(use_json=default_settings.log_json, log_level=default_settings.log_level)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "consent_gateway.api.main:app",
        host=default_settings.api_host,
        port=default_settings.api_port,
        log_level="info",
    )
