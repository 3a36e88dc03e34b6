"""healthcore: metric normalization, canonicalization, and query/export engine."""

__version__ = "0.1.0"
