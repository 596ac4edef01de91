"""Domain layer: reconciliation engine, ingestion pipeline and ports."""
