"""Health check endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from healthcore.dependencies import AppSettings, Registry, Store
from healthcore.errors import StoreUnavailable

router = APIRouter(tags=["system"])
logger = logging.getLogger("healthcore.health")


@router.get("/health")
async def health_check(store: Store, registry: Registry, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight store round-trip.
    """
    db_ok = False
    try:
        await store.ping()
        db_ok = True
    except StoreUnavailable as exc:
        logger.warning("Health check store probe failed: %s", exc)

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "registry_version": registry.version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
