"""Retrieval export endpoint."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Query

from healthcore.dependencies import Exporter
from healthcore.models.api import ExportChunkRead, ExportResponse

router = APIRouter(prefix="/users/{user_id}", tags=["export"])


@router.get("/export", response_model=ExportResponse)
async def export(
    user_id: str,
    exporter: Exporter,
    start: date = Query(...),
    end: date = Query(...),
    max_chunk_size: int | None = Query(default=None, ge=1, le=100000),
    include_daily_metrics: bool = True,
    include_events: bool = True,
) -> Any:
    """Ordered text chunks (summary, daily metrics, events) for the period."""
    chunks = await exporter.export(
        user_id, start, end,
        max_chunk_size=max_chunk_size,
        include_daily_metrics=include_daily_metrics,
        include_events=include_events,
    )
    return ExportResponse(
        start=start,
        end=end,
        total_chunks=len(chunks),
        chunks=[ExportChunkRead.model_validate(c) for c in chunks],
    )
