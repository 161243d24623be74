"""
provisioning_console.api.app

FastAPI app factory for the provisioning console.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Create and dispose shared infrastructure in the lifespan: the ledger engine,
  the provider HTTP clients and the provisioning stack (one ambient session
  per process).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from provisioning_console import __version__
from provisioning_console.api.routers.accounts import router as accounts_router
from provisioning_console.api.routers.dev_auth import router as dev_auth_router
from provisioning_console.api.routers.health import router as health_router
from provisioning_console.api.routers.roles import router as roles_router
from provisioning_console.api.routers.session import router as session_router
from provisioning_console.db.init_db import init_db
from provisioning_console.db.session import create_engine, create_sessionmaker
from provisioning_console.observability.logging import configure_logging, get_logger
from provisioning_console.observability.middleware import RequestContextMiddleware
from provisioning_console.services.stack import ProvisioningStack, build_http_client
from provisioning_console.settings import Settings

log = get_logger(__name__)


def create_app(
    *, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> FastAPI:
    """
    `transport` replaces the network for both provider clients (tests).
    """

    configure_logging(service_name=settings.service_name, level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        if settings.env in ("dev", "test"):
            # Dev/test convenience: prod runs Alembic migrations.
            await init_db(engine)

        identity_http = build_http_client(settings.identity_base_url, settings, transport=transport)
        directory_http = build_http_client(settings.directory_base_url, settings, transport=transport)
        app.state.provisioning = ProvisioningStack.build(
            settings=settings, identity_http=identity_http, directory_http=directory_http
        )
        try:
            yield
        finally:
            await identity_http.aclose()
            await directory_http.aclose()
            await engine.dispose()
            log.info("shutdown")

    app = FastAPI(
        title="Account Provisioning Console",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(session_router)
    app.include_router(roles_router)
    app.include_router(accounts_router)

    return app


# --- Module Notes -----------------------------------------------------------
# Composition lives here and in `services.stack`; business logic stays in the
# provisioning package and the service layer.
