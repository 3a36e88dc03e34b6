"""Domain records and API schemas."""
