"""
API routes for ChatLake.
"""

from chatlake.api.routes import batches, conversations, projects, runs, suggestions

__all__ = [
    "batches",
    "conversations",
    "projects",
    "runs",
    "suggestions",
]
