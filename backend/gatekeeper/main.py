"""FastAPI application entrypoint."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gatekeeper.api import api_router
from gatekeeper.core.config import Settings, get_settings
from gatekeeper.core.exceptions import GatekeeperError
from gatekeeper.core.logging import configure_logging
from gatekeeper.db.session import Database
from gatekeeper.services.notifications import build_provider
from gatekeeper.services.oauth import GoogleOAuthClient
from gatekeeper.services.rbac import seed_defaults
from gatekeeper.services.scheduler import (
    create_scheduler,
    schedule_reset_token_sweep,
    start_scheduler,
    stop_scheduler,
)

logger = logging.getLogger(__name__)


async def gatekeeper_error_handler(_: Request, exc: GatekeeperError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": type(exc).__name__},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)

        database = Database(settings.database_url)
        database.open()
        await database.create_all()
        async with database.session() as session:
            await seed_defaults(session)
            await session.commit()

        app.state.database = database
        app.state.notifier = build_provider(settings)
        app.state.oauth_client = GoogleOAuthClient(settings)

        scheduler = create_scheduler()
        if settings.token_cleanup_interval_minutes > 0:
            schedule_reset_token_sweep(scheduler, database, settings.token_cleanup_interval_minutes)
            start_scheduler(scheduler)

        logger.info("%s started", settings.app_name)
        try:
            yield
        finally:
            stop_scheduler(scheduler)
            await database.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.add_exception_handler(GatekeeperError, gatekeeper_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
