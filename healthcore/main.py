"""healthcore API: FastAPI application entry point.

Run locally:
    uvicorn healthcore.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from healthcore.config import get_settings
from healthcore.metrics.registry import get_registry
from healthcore.middleware.errors import register_error_handlers
from healthcore.routers import canonicalization, export, health, ingest, metrics, query
from healthcore.services.database import close_pool, init_pool
from healthcore.store.postgres import PostgresHealthStore

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("healthcore")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting healthcore API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    # Fail fast on a broken registry rather than on the first request
    get_registry()
    pool = await init_pool(settings)
    app.state.store = PostgresHealthStore(pool)
    yield
    await close_pool()
    logger.info("healthcore API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="healthcore API",
        description=(
            "Metric normalization, multi-source canonicalization, and "
            "query/export over personal health data."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    register_error_handlers(app)

    # CORS must be the innermost middleware so it can handle preflight
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(ingest.router, prefix=v1_prefix)
    app.include_router(canonicalization.router, prefix=v1_prefix)
    app.include_router(query.router, prefix=v1_prefix)
    app.include_router(export.router, prefix=v1_prefix)
    app.include_router(metrics.router, prefix=v1_prefix)

    return app


app = create_app()
