"""Ingestion endpoints: raw producer samples and health events."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from healthcore.dependencies import Pipeline
from healthcore.models.api import (
    EventIngestRequest,
    EventIngestResponse,
    IngestRequest,
    IngestResponse,
    NotMappedRead,
)

router = APIRouter(prefix="/users/{user_id}", tags=["ingest"])


@router.post("/measurements", response_model=IngestResponse, status_code=202)
async def ingest_measurements(user_id: str, body: IngestRequest, pipeline: Pipeline) -> Any:
    """Normalize, store and canonicalize a batch of raw samples.

    Unmapped fields and unconvertible units are reported, not rejected.
    """
    result = await pipeline.ingest(user_id, [s.to_domain() for s in body.samples])
    return IngestResponse(
        user_id=result.user_id,
        received=result.received,
        normalized=result.normalized,
        inserted=result.inserted,
        duplicates=result.duplicates,
        skipped=result.skipped,
        demoted=result.demoted,
        not_mapped=[NotMappedRead.model_validate(n) for n in result.not_mapped],
        conversion_errors=result.conversion_errors,
    )


@router.post("/events", response_model=EventIngestResponse, status_code=202)
async def ingest_events(user_id: str, body: EventIngestRequest, pipeline: Pipeline) -> Any:
    result = await pipeline.ingest_events(user_id, [e.to_domain(user_id) for e in body.events])
    return EventIngestResponse.model_validate(result)
