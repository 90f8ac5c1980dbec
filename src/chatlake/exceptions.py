"""
Custom exceptions for ChatLake.
"""

from typing import Optional


class ChatLakeError(Exception):
    """Base class for ChatLake errors."""


class ArtifactUnreadableError(ChatLakeError):
    """Raised when a raw artifact's bytes cannot be read back (fatal I/O)."""

    def __init__(self, artifact_id, reason: str):
        self.artifact_id = artifact_id
        self.reason = reason
        super().__init__(f"Raw artifact {artifact_id} is unreadable: {reason}")


class UnknownArtifactTypeError(ChatLakeError):
    """Raised when no parser is registered for an artifact type."""

    def __init__(self, artifact_type: str):
        self.artifact_type = artifact_type
        super().__init__(f"No parser registered for artifact type '{artifact_type}'")


class BatchStateError(ChatLakeError):
    """Raised when an import batch lifecycle transition is not allowed."""


class ImportCancelledError(ChatLakeError):
    """Raised when an import is cancelled between conversations."""


class ConfigurationError(ChatLakeError):
    """
    Raised when a derived computation is missing required upstream data.

    Example: a clustering run started when no segment embeddings exist.
    """


class RunStateError(ChatLakeError):
    """Raised when an inference run is completed or failed twice."""


class SuggestionStateError(ChatLakeError):
    """Raised when acting on a suggestion that is no longer pending."""

    def __init__(self, suggestion_id, status: str, action: Optional[str] = None):
        self.suggestion_id = suggestion_id
        self.status = status
        self.action = action
        verb = action or "act on"
        super().__init__(f"Cannot {verb} suggestion with status '{status}'")


class NotFoundError(ChatLakeError):
    """Raised when a referenced record does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class AllUnitsFailedError(ChatLakeError):
    """Raised when every unit of a derived computation failed, failing its run."""
