"""Read-side query engine, time bucketing, and daily rollups."""
