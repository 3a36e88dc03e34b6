"""Retrieval-ready text export of canonical health data."""
