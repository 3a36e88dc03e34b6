"""Turn query results into bounded-size text chunks for retrieval prompts.

Output is an ordered list of ``ExportChunk``: one or more ``summary`` chunks,
then ``daily_metrics`` chunks (ascending by date), then ``health_events``
chunks (newest first).  Blocks are packed greedily: a day or event block is
never split across chunks unless it alone exceeds the budget, in which case
it is cut at line boundaries (or, for a single overlong line, at the budget).
Concatenating every chunk's content reproduces the full formatted text.

Formatting is deterministic: no wall clock, no locale, key-sorted JSON.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Sequence

from healthcore.errors import InvalidQueryError
from healthcore.models.records import DailyAggregate, HealthEvent, ensure_utc
from healthcore.query.engine import HealthSummary, QueryEngine

logger = logging.getLogger("healthcore.export")

DEFAULT_MAX_CHUNK_SIZE = 2000

SUMMARY = "summary"
DAILY_METRICS = "daily_metrics"
HEALTH_EVENTS = "health_events"

# Summary keys are daily-table field names; these are how they read in prose.
FIELD_LABELS = {
    "steps": "Steps",
    "distance_km": "Distance (km)",
    "active_calories": "Active Calories",
    "exercise_minutes": "Exercise Minutes",
    "avg_heart_rate": "Avg Heart Rate",
    "resting_heart_rate": "Resting Heart Rate",
    "heart_rate_variability": "Heart Rate Variability",
    "sleep_hours": "Sleep Hours",
    "calories_consumed": "Calories Consumed",
    "protein_g": "Protein (g)",
    "carbs_g": "Carbs (g)",
    "fat_g": "Fat (g)",
    "water_ml": "Water (ml)",
    "workout_count": "Workouts",
    "strength_sessions": "Strength Sessions",
    "cardio_sessions": "Cardio Sessions",
}

# (field, line template) in the order lines appear in a day block
_DAY_LINES = (
    ("steps", "Steps: {}"),
    ("distance_km", "Distance: {} km"),
    ("active_calories", "Active Calories: {} kcal"),
    ("exercise_minutes", "Exercise: {} minutes"),
    ("avg_heart_rate", "Avg Heart Rate: {} bpm"),
    ("resting_heart_rate", "Resting Heart Rate: {} bpm"),
    ("sleep_hours", "Sleep: {} hours"),
    ("calories_consumed", "Calories Consumed: {} kcal"),
    ("protein_g", "Protein: {}g"),
    ("workout_count", "Workouts: {}"),
)


@dataclass
class ExportChunk:
    """One retrieval chunk.

    Attributes:
        type:     'summary', 'daily_metrics' or 'health_events'.
        content:  Text, never longer than the export's chunk budget.
        metadata: Provenance (data kind and covered date range).
    """

    type: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content, "metadata": dict(self.metadata)}


# ---------------------------------------------------------------------------
# Text rendering
# ---------------------------------------------------------------------------


def _fmt(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_summary(summary: HealthSummary) -> str:
    text = f"Health Data Summary ({summary.start.isoformat()} to {summary.end.isoformat()}):\n\n"
    text += f"Period: {summary.requested_days} days ({summary.days} with data)\n\n"

    if summary.averages:
        text += "Daily Averages:\n"
        for key, value in summary.averages.items():
            text += f"- {FIELD_LABELS.get(key, key)}: {_fmt(value)}\n"
        text += "\n"

    if summary.totals:
        text += "Totals:\n"
        for key, value in summary.totals.items():
            text += f"- {FIELD_LABELS.get(key, key)}: {_fmt(value)}\n"
        text += "\n"

    if summary.latest_weight_kg is not None:
        text += f"Latest Weight: {_fmt(summary.latest_weight_kg)} kg\n\n"

    if summary.events:
        text += "Activities:\n"
        for event_type, count in summary.events.items():
            text += f"- {event_type}: {count} times\n"

    return text


def format_day(day: DailyAggregate) -> str:
    """Human-readable block for one daily row; zero and empty fields are omitted."""
    text = f"\nDate: {day.date.isoformat()}\n"
    for name, template in _DAY_LINES:
        value = getattr(day, name)
        if value:
            text += template.format(_fmt(value)) + "\n"
    return text


def format_event(event: HealthEvent) -> str:
    started = ensure_utc(event.start_time).strftime("%Y-%m-%d %H:%M UTC")
    text = f"\n{event.event_type} - {started}\n"
    if event.title:
        text += f"Title: {event.title}\n"
    if event.description:
        text += f"Description: {event.description}\n"
    if event.duration_seconds:
        text += f"Duration: {int(event.duration_seconds / 60 + 0.5)} minutes\n"
    if event.metrics:
        text += f"Details: {json.dumps(event.metrics, sort_keys=True, default=str)}\n"
    return text


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


def split_oversize(text: str, max_size: int) -> list[str]:
    """Cut *text* into pieces of at most *max_size*, preferring line breaks.

    Unlike a display splitter nothing is stripped, so ``"".join`` of the
    result is exactly *text*.
    """
    if len(text) <= max_size:
        return [text]

    pieces: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > max_size:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(line[:max_size])
            line = line[max_size:]
        if current and len(current) + len(line) > max_size:
            pieces.append(current)
            current = line
        else:
            current += line
    if current:
        pieces.append(current)
    return pieces


def chunk_blocks(
    blocks: Iterable[tuple[str, str]],
    max_size: int,
) -> list[tuple[str, str, str]]:
    """Greedily pack ``(key, text)`` blocks into chunks of at most *max_size*.

    Returns ``(content, first_key, last_key)`` per chunk.  Empty chunks are
    never produced.
    """
    chunks: list[tuple[str, str, str]] = []
    current = ""
    first_key = last_key = ""

    for key, block in blocks:
        for piece in split_oversize(block, max_size):
            if not piece:
                continue
            if current and len(current) + len(piece) > max_size:
                chunks.append((current, first_key, last_key))
                current = ""
            if not current:
                first_key = key
            current += piece
            last_key = key

    if current:
        chunks.append((current, first_key, last_key))
    return chunks


def _require_budget(max_chunk_size: int) -> None:
    if max_chunk_size <= 0:
        raise InvalidQueryError("max_chunk_size must be positive")


def summary_chunks(summary: HealthSummary, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> list[ExportChunk]:
    _require_budget(max_chunk_size)
    metadata = {"startDate": summary.start.isoformat(), "endDate": summary.end.isoformat(), "days": summary.days}
    return [
        ExportChunk(type=SUMMARY, content=piece, metadata=dict(metadata))
        for piece in split_oversize(format_summary(summary), max_chunk_size)
    ]


def daily_chunks(days: Sequence[DailyAggregate], max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> list[ExportChunk]:
    _require_budget(max_chunk_size)
    packed = chunk_blocks(((d.date.isoformat(), format_day(d)) for d in days), max_chunk_size)
    return [
        ExportChunk(
            type=DAILY_METRICS,
            content=content,
            metadata={"dataType": "daily_summary", "startDate": first, "endDate": last},
        )
        for content, first, last in packed
    ]


def event_chunks(events: Sequence[HealthEvent], max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> list[ExportChunk]:
    """Event chunks; events keep their input order, so ranges may run backwards in time."""
    _require_budget(max_chunk_size)
    packed = chunk_blocks(
        ((ensure_utc(e.start_time).isoformat(), format_event(e)) for e in events), max_chunk_size
    )
    return [
        ExportChunk(
            type=HEALTH_EVENTS,
            content=content,
            metadata={"dataType": "events", "firstEventAt": first, "lastEventAt": last},
        )
        for content, first, last in packed
    ]


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class ExportFormatter:
    """Reads a period through the query engine and renders it as chunks."""

    def __init__(self, query_engine: QueryEngine, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> None:
        self._query = query_engine
        self._max_chunk_size = max_chunk_size

    async def export(
        self,
        user_id: str,
        start: date | datetime,
        end: date | datetime,
        max_chunk_size: int | None = None,
        include_daily_metrics: bool = True,
        include_events: bool = True,
    ) -> list[ExportChunk]:
        budget = self._max_chunk_size if max_chunk_size is None else max_chunk_size
        _require_budget(budget)

        summary = await self._query.summary(user_id, start, end)
        chunks = summary_chunks(summary, budget)

        if include_daily_metrics:
            days = await self._query.daily_metrics(user_id, summary.start, summary.end)
            chunks.extend(daily_chunks(days, budget))

        if include_events:
            events = await self._query.health_events(user_id, summary.start, summary.end)
            chunks.extend(event_chunks(events, budget))

        logger.info(
            "Exported %d chunk(s) for user %s (%s to %s, budget %d)",
            len(chunks), user_id, summary.start, summary.end, budget,
        )
        return chunks
