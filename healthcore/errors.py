"""Typed error taxonomy shared by the normalizer, engines, and store.

Normalization failures are per-record and recoverable (the caller logs and
skips).  Canonicalization, query, and store failures propagate to the caller
as the types below, never as silent empty results.
"""

from __future__ import annotations


class HealthCoreError(Exception):
    """Base class for every error raised by healthcore."""


class ConversionError(HealthCoreError, ValueError):
    """No conversion is known between two units.

    Fatal for the single record being normalized.  An unconverted value must
    never be stored in place of a converted one.
    """

    def __init__(self, from_unit: str, to_unit: str, metric: str | None = None) -> None:
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.metric = metric
        target = f" for {metric}" if metric else ""
        super().__init__(f"No conversion from {from_unit!r} to {to_unit!r}{target}")


class CanonicalizationConflict(HealthCoreError):
    """The registry cannot classify a metric type consistently.

    Under a valid registry the tie-break policy is total, so this always
    indicates misconfiguration rather than bad data.
    """


class StoreUnavailable(HealthCoreError):
    """Transient failure talking to the backing store."""


class InvalidQueryError(HealthCoreError, ValueError):
    """Query arguments are malformed (bad range, unsupported aggregation, ...)."""


class UnknownMetricError(HealthCoreError, LookupError):
    """A metric type id is not declared in the registry."""

    def __init__(self, metric_type: str) -> None:
        self.metric_type = metric_type
        super().__init__(f"Unknown metric type: {metric_type!r}")
