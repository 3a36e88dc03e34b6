"""Raw producer sample → canonical MeasurementRecord.

Pure, synchronous, no I/O: safe to call from any number of ingestion
workers.  A sample whose producer field is unknown yields ``NotMapped``
(the caller logs and drops it).  A sample whose unit cannot be converted
raises ``ConversionError``; an unconverted value is never returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from healthcore.errors import ConversionError
from healthcore.metrics.registry import MetricRegistry, get_registry
from healthcore.metrics.units import convert
from healthcore.models.records import MeasurementRecord, RawMeasurement, ensure_utc

logger = logging.getLogger("healthcore.metrics.normalizer")


@dataclass(frozen=True)
class NotMapped:
    """Result for a producer field the registry does not know."""

    producer: str
    producer_field: str
    reason: str = "producer field is not mapped"


def should_be_canonical(producer: str, metric_type: str) -> bool:
    """Provisional canonical flag assigned at ingestion.

    Always True: only the canonicalization engine may demote a record,
    and only once a higher-priority duplicate is known to exist.
    """
    return True


def normalize(
    user_id: str,
    sample: RawMeasurement,
    registry: MetricRegistry | None = None,
) -> MeasurementRecord | NotMapped:
    """Convert one raw sample into a canonical record.

    Args:
        user_id:  Owner of the measurement.
        sample:   The raw producer sample.
        registry: Registry to resolve against (defaults to the global one).

    Returns:
        A MeasurementRecord in the metric's canonical unit, or NotMapped.

    Raises:
        ConversionError: If the sample's unit cannot be converted.
    """
    reg = registry or get_registry()
    mapping = reg.mapping(sample.producer, sample.producer_field)
    if mapping is None:
        return NotMapped(producer=sample.producer, producer_field=sample.producer_field)

    metric = reg.metric(mapping.metric)
    from_unit = sample.raw_unit or mapping.unit
    value = convert(sample.raw_value, from_unit, metric.unit, metric=metric.id)

    return MeasurementRecord(
        user_id=user_id,
        metric_type=metric.id,
        value=value,
        unit=metric.unit,
        recorded_at=ensure_utc(sample.recorded_at),
        producer=sample.producer,
        category=metric.category,
        quality_score=reg.quality_score(sample.producer),
        source_device=sample.source_device,
        is_canonical=should_be_canonical(sample.producer, metric.id),
        is_aggregated=False,
        description=sample.description,
        metadata=dict(sample.metadata),
    )


@dataclass
class NormalizedBatch:
    """Outcome of normalizing a batch: records plus what was skipped."""

    records: list[MeasurementRecord]
    not_mapped: list[NotMapped]
    conversion_errors: list[ConversionError]

    @property
    def skipped(self) -> int:
        return len(self.not_mapped) + len(self.conversion_errors)


def normalize_batch(
    user_id: str,
    samples: Iterable[RawMeasurement],
    registry: MetricRegistry | None = None,
) -> NormalizedBatch:
    """Normalize many samples, skipping and logging per-record failures."""
    reg = registry or get_registry()
    batch = NormalizedBatch(records=[], not_mapped=[], conversion_errors=[])

    for sample in samples:
        try:
            result = normalize(user_id, sample, reg)
        except ConversionError as exc:
            logger.warning(
                "Dropping %s/%s sample at %s: %s",
                sample.producer, sample.producer_field, sample.recorded_at, exc,
            )
            batch.conversion_errors.append(exc)
            continue
        if isinstance(result, NotMapped):
            logger.warning("Unmapped field %s/%s; sample dropped", result.producer, result.producer_field)
            batch.not_mapped.append(result)
            continue
        batch.records.append(result)

    logger.info(
        "Normalized %d sample(s) for user %s (%d skipped)",
        len(batch.records), user_id, batch.skipped,
    )
    return batch
