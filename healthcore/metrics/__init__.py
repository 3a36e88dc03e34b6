"""Metric registry, unit conversion, and normalization."""
