"""ChatLake HTTP API."""
