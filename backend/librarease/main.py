"""Librarease: FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from librarease.api import (
    auth, books, borrowings, collections, files, health, jobs, libraries, memberships, notifications, reviews,
    staffs, subscriptions, users,
)
from librarease.api.responses import install_error_handlers
from librarease.config import settings
from librarease.container import Services, services_from_settings
from librarease.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from librarease.database import dispose_db, init_db

    owned = getattr(app.state, "services", None) is None
    if owned:
        await init_db()
        app.state.services = services_from_settings(settings, with_hub=True)
    services: Services = app.state.services
    if services.hub is not None:
        await services.hub.start()
    logger.info(f"{settings.app_name} API ready ({settings.app_env})")
    yield
    # Shutdown
    if services.hub is not None:
        await services.hub.stop()
    await services.aclose()
    if owned:
        await dispose_db()


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        description="Multi-tenant library management backend",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    # ── Mount routers ────────────────────────────────────────────
    app.include_router(health.router,         prefix="/api/v1", tags=["system"])
    app.include_router(auth.router,           prefix="/api/v1", tags=["auth"])
    app.include_router(users.router,          prefix="/api/v1", tags=["users"])
    app.include_router(libraries.router,      prefix="/api/v1", tags=["libraries"])
    app.include_router(staffs.router,         prefix="/api/v1", tags=["staffs"])
    app.include_router(memberships.router,    prefix="/api/v1", tags=["memberships"])
    app.include_router(subscriptions.router,  prefix="/api/v1", tags=["subscriptions"])
    app.include_router(books.router,          prefix="/api/v1", tags=["books"])
    app.include_router(collections.router,    prefix="/api/v1", tags=["collections"])
    app.include_router(borrowings.router,     prefix="/api/v1", tags=["borrowings"])
    app.include_router(reviews.router,        prefix="/api/v1", tags=["reviews"])
    app.include_router(notifications.router,  prefix="/api/v1", tags=["notifications"])
    app.include_router(jobs.router,           prefix="/api/v1", tags=["jobs"])
    app.include_router(files.router,          prefix="/api/v1", tags=["files"])
    return app


app = create_app()


def run() -> None:
    configure_logging(settings.log_level)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        timeout_graceful_shutdown=10,
    ))
    try:
        server.run()
    except Exception:
        logger.exception("API server terminated with an error")
        sys.exit(1)


if __name__ == "__main__":
    run()
