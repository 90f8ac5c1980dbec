"""Raw artifact storage."""
