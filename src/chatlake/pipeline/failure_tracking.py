"""
Shared failure tracking utilities for the ingestion pipeline.

Centralizes persisting parse and ingest failures so a bad entry or artifact
is recorded without breaking the import around it.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy.orm import Session

from chatlake.db.repositories import ParsingFailureRepository
from chatlake.models.db import ParsingFailure

logger = logging.getLogger(__name__)

STAGE_PARSE = "parse"
STAGE_INGEST = "ingest"
STAGE_READ = "read"


def track_parse_failure(
    session: Session,
    artifact_id: uuid.UUID,
    stage: str,
    message: str,
    external_id: Optional[str] = None,
) -> Optional[ParsingFailure]:
    """
    Record a ParsingFailure for an artifact inside a savepoint.

    Args:
        session: Database session (the caller commits)
        artifact_id: Artifact the failure belongs to
        stage: One of "parse", "ingest" or "read"
        message: Error description
        external_id: Source conversation id, when known

    Returns:
        The failure row, or None if it could not be written.

    This function is safe to call - it will log but not raise if tracking fails.
    """
    try:
        with session.begin_nested():
            failure = ParsingFailureRepository(session).create(
                raw_artifact_id=artifact_id,
                failure_stage=stage,
                failure_message=message[:4000],
                external_conversation_id=external_id,
            )
        logger.debug(f"Tracked {stage} failure for artifact {artifact_id}: {message}")
        return failure
    except Exception as tracking_error:
        # Tracking must never break the import
        logger.warning(f"Could not track {stage} failure for artifact {artifact_id}: {tracking_error}")
        return None


def get_failures(session: Session, batch_id: uuid.UUID) -> List[ParsingFailure]:
    """All parsing failures recorded for a batch's artifacts, oldest first."""
    return ParsingFailureRepository(session).get_by_batch(batch_id)
