"""Metric registry catalogue (read-only)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from healthcore.dependencies import Registry
from healthcore.models.api import MetricTypeRead, ProducerRead, RegistryRead

router = APIRouter(prefix="/registry", tags=["registry"])


@router.get("", response_model=RegistryRead)
async def get_catalogue(registry: Registry) -> Any:
    return RegistryRead(
        version=registry.version,
        categories=list(registry.categories),
        default_quality_score=registry.default_quality_score,
        metric_types=[MetricTypeRead.model_validate(m) for m in registry.metric_types.values()],
        producers=[ProducerRead.model_validate(p) for p in registry.producers.values()],
    )


@router.get("/metrics/{metric_type}", response_model=MetricTypeRead)
async def get_metric_type(metric_type: str, registry: Registry) -> Any:
    return MetricTypeRead.model_validate(registry.metric(metric_type))
