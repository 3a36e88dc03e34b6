"""Ingestion: normalize, upsert, then canonicalize per producer."""
