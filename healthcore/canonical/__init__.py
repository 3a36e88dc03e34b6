"""Native-priority canonicalization of overlapping measurements."""
