"""Per-row enrichment of connection events."""
