"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from healthcore.canonical.engine import CanonicalizationEngine
from healthcore.config import Settings, get_settings
from healthcore.export.formatter import ExportFormatter
from healthcore.ingest.pipeline import IngestionPipeline
from healthcore.metrics.registry import MetricRegistry, get_registry
from healthcore.query.engine import QueryEngine
from healthcore.store.base import HealthStore


def get_store(request: Request) -> HealthStore:
    """The HealthStore created by the app lifespan (``app.state.store``)."""
    return request.app.state.store


def get_metric_registry() -> MetricRegistry:
    return get_registry()


AppSettings = Annotated[Settings, Depends(get_settings)]
Store = Annotated[HealthStore, Depends(get_store)]
Registry = Annotated[MetricRegistry, Depends(get_metric_registry)]


def get_canonicalization_engine(store: Store, registry: Registry, settings: AppSettings) -> CanonicalizationEngine:
    return CanonicalizationEngine(
        store,
        registry,
        page_size=settings.canonicalization_page_size,
        update_batch_size=settings.canonicalization_update_batch_size,
    )


Canonicalizer = Annotated[CanonicalizationEngine, Depends(get_canonicalization_engine)]


def get_query_engine(store: Store, registry: Registry, settings: AppSettings) -> QueryEngine:
    return QueryEngine(store, registry, search_limit=settings.search_result_limit)


Queries = Annotated[QueryEngine, Depends(get_query_engine)]


def get_ingestion_pipeline(store: Store, registry: Registry, canonicalizer: Canonicalizer) -> IngestionPipeline:
    return IngestionPipeline(store, registry, canonicalizer)


def get_export_formatter(queries: Queries, settings: AppSettings) -> ExportFormatter:
    return ExportFormatter(queries, max_chunk_size=settings.export_max_chunk_size)


Pipeline = Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)]
Exporter = Annotated[ExportFormatter, Depends(get_export_formatter)]
