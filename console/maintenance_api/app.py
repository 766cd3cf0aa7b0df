"""
FastAPI application factory for the JOAP maintenance API.

This module creates the FastAPI app with:
- Backup engine lifecycle management
- CORS configuration for the admin frontend
- Maintenance routes under /api/maintenance
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from joap.backup_engine.config import EngineConfig
from joap.backup_engine.main import Engine

from .config import Settings
from .routes import router

logger = logging.getLogger(__name__)


def create_app(
    engine_config: EngineConfig | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine_config: Engine configuration (loaded from env at startup if not provided)
        settings: API settings (loaded from env if not provided)
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage backup engine lifecycle."""
        engine = Engine(engine_config or EngineConfig.from_env())
        await engine.start()
        engine.gateway.default_page_size = settings.default_page_size
        app.state.engine = engine
        app.state.settings = settings

        yield

        await engine.stop()

    app = FastAPI(
        title="JOAP Maintenance",
        description="Backup, restore and auto-backup scheduling for JOAP.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "code": "INTERNAL"},
        )

    # API routes (health included)
    app.include_router(router, prefix="/api/maintenance")

    return app


# Default app instance
app = create_app()
