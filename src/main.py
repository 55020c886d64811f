"""Weighttrack API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import get_settings
from src.middleware.supabase_auth import SupabaseAuthMiddleware
from src.routers import health, withings
from src.services.database import close_pool, init_pool
from src.withings.config_loader import get_sync_config

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("weighttrack")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Weighttrack API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    get_sync_config()  # fail fast on an invalid sync_config.yaml
    app.state.pool = await init_pool(settings)
    app.state.http_client = httpx.AsyncClient(timeout=settings.withings_http_timeout_seconds)
    yield
    await app.state.http_client.aclose()
    await close_pool(app.state.pool)
    logger.info("Weighttrack API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()
    logger.setLevel(settings.log_level.upper())

    app = FastAPI(
        title="Weighttrack API",
        description="Body-weight tracking with Withings scale synchronization.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware (order matters — outermost first) ----------

    app.add_middleware(SupabaseAuthMiddleware, settings=settings)

    # CORS — must be the innermost middleware so it can handle preflight
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(withings.router, prefix="/api/v1")

    return app


app = create_app()
