"""SQL text helpers for the Postgres store.

Uniqueness keys enforced by the schema:
    - health_measurements:  (user_id, metric_type, recorded_at, producer)
    - health_events:        (user_id, event_type, start_time)
    - health_daily_metrics: (user_id, date)
"""

from __future__ import annotations


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    returning: str | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT query.

    Generates idempotent writes, safe to call multiple times with the same
    data.  With ``update_columns=[]`` an exact duplicate is ignored
    (``DO NOTHING``); otherwise the listed columns are overwritten.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        returning:        Optional RETURNING expression (e.g. 'id').

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in update_columns
        )
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    query = (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
    if returning:
        query += f" RETURNING {returning}"
    return query


def escape_like(text: str) -> str:
    """Escape LIKE/ILIKE wildcards so *text* matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def parse_row_count(status: str) -> int:
    """Return the row count from an asyncpg command status ('UPDATE 3')."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0
