"""Load, validate, and hot-reload the healthcore metric registry.

The registry lives in ``metric_registry.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_registry()`` to re-read
from disk after an admin update; no restart required.

Usage::

    from healthcore.metrics.registry import get_registry

    registry = get_registry()
    registry.quality_score("Strava")              # 0.95
    registry.is_exclusive("protein_g")            # True
    registry.mapping("Strava", "distance")        # ProducerField(metric='distance_mi', unit='m')
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from healthcore.errors import CanonicalizationConflict, UnknownMetricError
from healthcore.metrics.units import can_convert, normalize_unit

logger = logging.getLogger("healthcore.metrics.registry")

# Path to the YAML file sitting next to this module
_REGISTRY_PATH = Path(__file__).parent / "metric_registry.yaml"

CONTESTABLE = "contestable"
EXCLUSIVE = "exclusive"


# ---------------------------------------------------------------------------
# Typed registry entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricType:
    """One canonical metric type.

    Attributes:
        id:           Stable identifier (e.g. 'steps', 'weight_lbs').
        category:     Semantic category (activity, vitals, ...).
        unit:         Canonical unit symbol every stored value is expressed in.
        display_name: Human-readable name.
        contestable:  True if native stores and third parties both report it.
    """

    id: str
    category: str
    unit: str
    display_name: str
    contestable: bool


@dataclass(frozen=True)
class Producer:
    """A source system and its flat quality score."""

    name: str
    native: bool
    quality_score: float


@dataclass(frozen=True)
class ProducerField:
    """Where a producer field lands: target metric plus the unit it is emitted in."""

    metric: str
    unit: str


@dataclass(frozen=True)
class MetricRegistry:
    """Complete, validated metric registry.

    This is the single in-memory representation of metric_registry.yaml.
    The normalizer, canonicalization engine and query engine all read from
    this object; it is never mutated after construction.

    Attributes:
        version:               Registry schema version string.
        categories:            Declared metric categories.
        default_quality_score: Score for unrecognized producers (< 1.0).
        metric_types:          metric id → MetricType.
        producers:             producer name → Producer.
        producer_fields:       (producer, field) → ProducerField.
    """

    version: str
    categories: tuple[str, ...]
    default_quality_score: float
    metric_types: Mapping[str, MetricType]
    producers: Mapping[str, Producer]
    producer_fields: Mapping[tuple[str, str], ProducerField]

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    def metric(self, metric_id: str) -> MetricType:
        """Return the MetricType for *metric_id*.

        Raises:
            UnknownMetricError: If the id is not declared.
        """
        try:
            return self.metric_types[metric_id]
        except KeyError:
            raise UnknownMetricError(metric_id) from None

    def quality_score(self, producer: str) -> float:
        """Return the quality score for a producer.

        Unrecognized producers get ``default_quality_score``, never 1.0.
        """
        entry = self.producers.get(producer)
        return entry.quality_score if entry else self.default_quality_score

    def is_native(self, producer: str) -> bool:
        entry = self.producers.get(producer)
        return bool(entry and entry.native)

    def classify(self, metric_id: str) -> str:
        """Return 'contestable' or 'exclusive' for a metric id.

        Raises:
            CanonicalizationConflict: If the metric is not in the registry,
                so it cannot be classified for canonicalization.
        """
        metric = self.metric_types.get(metric_id)
        if metric is None:
            raise CanonicalizationConflict(
                f"Metric type {metric_id!r} has no canonicalization classification"
            )
        return CONTESTABLE if metric.contestable else EXCLUSIVE

    def is_exclusive(self, metric_id: str) -> bool:
        return self.classify(metric_id) == EXCLUSIVE

    def mapping(self, producer: str, producer_field: str) -> ProducerField | None:
        """Return the mapping for a producer field, or None if unmapped."""
        return self.producer_fields.get((producer, producer_field))

    @property
    def native_producers(self) -> frozenset[str]:
        return frozenset(p.name for p in self.producers.values() if p.native)

    @property
    def contestable_metrics(self) -> tuple[str, ...]:
        return tuple(m.id for m in self.metric_types.values() if m.contestable)

    def metrics_in_category(self, category: str) -> list[MetricType]:
        return [m for m in self.metric_types.values() if m.category == category]


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when metric_registry.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Metric registry not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _score(value: Any, where: str, errors: list[str]) -> float | None:
    try:
        score = float(value)
    except (TypeError, ValueError):
        errors.append(f"{where} must be a number, got {value!r}")
        return None
    if not (0.0 <= score <= 1.0):
        errors.append(f"{where} = {score} is out of range [0.0, 1.0]")
    return score


def build_registry(raw: Mapping[str, Any]) -> MetricRegistry:
    """Validate a raw registry mapping and construct a MetricRegistry.

    Every problem found is collected and reported together.

    Args:
        raw: Parsed YAML (or an equivalent in-memory dict).

    Returns:
        Validated MetricRegistry instance.

    Raises:
        ConfigValidationError: If any rule is violated.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    # ── Categories ──
    categories = tuple(raw.get("categories") or ())
    if not categories:
        errors.append("'categories' section is missing or empty")

    # ── Default quality score ──
    default_score = _score(raw.get("default_quality_score", 0.5), "default_quality_score", errors)
    if default_score is not None and default_score >= 1.0:
        errors.append("default_quality_score must be strictly below 1.0")

    # ── Producers ──
    producers: dict[str, Producer] = {}
    for name, cfg in (raw.get("producers") or {}).items():
        if not isinstance(cfg, dict):
            errors.append(f"producers.{name} must be a mapping")
            continue
        score = _score(cfg.get("quality_score"), f"producers.{name}.quality_score", errors)
        producers[name] = Producer(
            name=name,
            native=bool(cfg.get("native", False)),
            quality_score=score if score is not None else 0.0,
        )

    # ── Canonicalization classification ──
    canon_raw = raw.get("canonicalization") or {}
    contestable = set(canon_raw.get(CONTESTABLE) or ())
    exclusive = set(canon_raw.get(EXCLUSIVE) or ())
    for metric_id in sorted(contestable & exclusive):
        errors.append(f"metric '{metric_id}' is classified as both contestable and exclusive")

    # ── Metric types ──
    metric_types_raw = raw.get("metric_types") or {}
    if not metric_types_raw:
        errors.append("'metric_types' section is missing or empty")

    metric_types: dict[str, MetricType] = {}
    for metric_id, cfg in metric_types_raw.items():
        if not isinstance(cfg, dict):
            errors.append(f"metric_types.{metric_id} must be a mapping")
            continue
        category = cfg.get("category")
        unit = cfg.get("unit")
        if category not in categories:
            errors.append(f"metric_types.{metric_id}.category {category!r} is not a declared category")
        if not unit:
            errors.append(f"metric_types.{metric_id}.unit is required")
        if metric_id not in contestable and metric_id not in exclusive:
            errors.append(f"metric '{metric_id}' is not classified as contestable or exclusive")
        metric_types[metric_id] = MetricType(
            id=metric_id,
            category=str(category),
            unit=normalize_unit(str(unit or "")),
            display_name=str(cfg.get("display_name") or metric_id),
            contestable=metric_id in contestable,
        )

    for metric_id in sorted((contestable | exclusive) - set(metric_types)):
        errors.append(f"canonicalization lists undeclared metric '{metric_id}'")

    # ── Producer field mappings ──
    producer_fields: dict[tuple[str, str], ProducerField] = {}
    for producer, fields in (raw.get("producer_fields") or {}).items():
        if producer not in producers:
            errors.append(f"producer_fields.{producer} names an undeclared producer")
        if not isinstance(fields, dict):
            errors.append(f"producer_fields.{producer} must be a mapping of field→metric")
            continue
        for field_name, cfg in fields.items():
            where = f"producer_fields.{producer}.{field_name}"
            if not isinstance(cfg, dict) or "metric" not in cfg:
                errors.append(f"{where} must declare a 'metric'")
                continue
            target = metric_types.get(cfg["metric"])
            if target is None:
                errors.append(f"{where} maps to undeclared metric {cfg['metric']!r}")
                continue
            unit = normalize_unit(str(cfg.get("unit") or target.unit))
            if not can_convert(unit, target.unit):
                errors.append(f"{where}: no conversion from {unit!r} to {target.unit!r}")
            producer_fields[(producer, field_name)] = ProducerField(metric=target.id, unit=unit)

    if errors:
        raise ConfigValidationError(
            f"metric_registry.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return MetricRegistry(
        version=version,
        categories=categories,
        default_quality_score=default_score if default_score is not None else 0.5,
        metric_types=MappingProxyType(metric_types),
        producers=MappingProxyType(producers),
        producer_fields=MappingProxyType(producer_fields),
    )


def load_registry(path: Path | str | None = None) -> MetricRegistry:
    """Load and validate the metric registry from disk.

    Args:
        path: Override path to YAML. Uses the bundled metric_registry.yaml by default.

    Returns:
        Validated MetricRegistry instance.
    """
    target = Path(path) if path else _REGISTRY_PATH
    raw = _load_yaml(target)
    registry = build_registry(raw)
    logger.info(
        "Loaded metric registry v%s from %s (%d metrics, %d producers)",
        registry.version,
        target,
        len(registry.metric_types),
        len(registry.producers),
    )
    return registry


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_registry: MetricRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> MetricRegistry:
    """Return the global MetricRegistry singleton, loading it on first call.

    Thread-safe.  The path comes from ``Settings.registry_path`` when set.
    """
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:  # double-checked locking
                from healthcore.config import get_settings

                _registry = load_registry(get_settings().registry_path)
    return _registry


def reload_registry(path: Path | str | None = None) -> MetricRegistry:
    """Reload the registry from disk and replace the global singleton.

    If validation fails, the old registry is retained and the error is
    re-raised.

    Raises:
        ConfigValidationError: If the new registry is invalid.
        FileNotFoundError:     If the file is missing.
    """
    global _registry
    new_registry = load_registry(path)  # validate before acquiring lock
    with _registry_lock:
        old_version = _registry.version if _registry else "none"
        _registry = new_registry
    logger.info("Reloaded metric registry: %s → %s", old_version, new_registry.version)
    return new_registry
