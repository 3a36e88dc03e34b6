"""Canonicalization endpoints: on-demand runs and native-data lookups."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query

from healthcore.dependencies import Canonicalizer, Registry
from healthcore.errors import InvalidQueryError
from healthcore.models.api import CanonicalizationRequest, CanonicalizationResponse, NativeDataResponse

router = APIRouter(prefix="/users/{user_id}/canonicalization", tags=["canonicalization"])


@router.post("/run", response_model=CanonicalizationResponse)
async def run_canonicalization(user_id: str, body: CanonicalizationRequest, engine: Canonicalizer) -> Any:
    """Re-run the native-priority check; safe to repeat."""
    if (body.start is None) != (body.end is None):
        raise InvalidQueryError("start and end must be given together")
    date_range = (body.start, body.end) if body.start is not None else None
    if date_range is not None and body.end < body.start:
        raise InvalidQueryError(f"end ({body.end}) is before start ({body.start})")

    result = await engine.run_canonicalization_check(user_id, body.producer, body.metric_types, date_range)
    return CanonicalizationResponse(
        updated_count=result.updated_count,
        scanned=result.scanned,
        metric_types=list(result.metric_types),
    )


@router.get("/native/{metric_type}", response_model=NativeDataResponse)
async def native_data(
    user_id: str,
    metric_type: str,
    engine: Canonicalizer,
    registry: Registry,
    recorded_at: datetime = Query(...),
) -> Any:
    """Whether a native record exists within 30 minutes of *recorded_at*."""
    registry.metric(metric_type)
    found = await engine.has_native_data(user_id, metric_type, recorded_at)
    return NativeDataResponse(metric_type=metric_type, recorded_at=recorded_at, has_native_data=found)
