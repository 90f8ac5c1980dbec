"""SQLAlchemy models and parsed-export dataclasses."""
