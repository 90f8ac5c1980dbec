"""Import pipeline: orchestration, ingestion, failure tracking and cleanup."""
