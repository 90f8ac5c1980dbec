"""
Project suggestion repository.
"""

import uuid
from typing import List

from sqlalchemy import desc
from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import ProjectSuggestion, SuggestionStatus


class ProjectSuggestionRepository(BaseRepository[ProjectSuggestion]):
    """Repository for ProjectSuggestion model."""

    def __init__(self, session: Session):
        super().__init__(ProjectSuggestion, session)

    def get_by_status(self, status: SuggestionStatus) -> List[ProjectSuggestion]:
        """Suggestions with a status, highest confidence first."""
        return (
            self.session.query(ProjectSuggestion)
            .filter(ProjectSuggestion.status == status)
            .order_by(desc(ProjectSuggestion.confidence), ProjectSuggestion.suggested_name)
            .all()
        )

    def get_by_run(self, inference_run_id: uuid.UUID) -> List[ProjectSuggestion]:
        """Suggestions of one clustering run, largest cluster first."""
        return (
            self.session.query(ProjectSuggestion)
            .filter(ProjectSuggestion.inference_run_id == inference_run_id)
            .order_by(desc(ProjectSuggestion.segment_count), ProjectSuggestion.suggested_project_key)
            .all()
        )

    def prune_pending(
        self, conversation_ids: List[uuid.UUID], segment_ids: List[uuid.UUID]
    ) -> int:
        """
        Remove deleted conversations and segments from pending suggestions.

        A pending suggestion left without conversations is deleted.

        Returns:
            Number of suggestions updated or deleted
        """
        gone_conversations = {str(c) for c in conversation_ids}
        gone_segments = {str(s) for s in segment_ids}
        if not gone_conversations and not gone_segments:
            return 0

        touched = 0
        for suggestion in self.get_by_status(SuggestionStatus.PENDING):
            kept_conversations = [
                c for c in suggestion.conversation_ids if str(c) not in gone_conversations
            ]
            kept_segments = [s for s in suggestion.segment_ids if str(s) not in gone_segments]
            if (
                len(kept_conversations) == len(suggestion.conversation_ids)
                and len(kept_segments) == len(suggestion.segment_ids)
            ):
                continue
            touched += 1
            if not kept_conversations:
                self.session.delete(suggestion)
                continue
            # JSON columns are replaced, not mutated in place
            suggestion.conversation_ids = kept_conversations
            suggestion.segment_ids = kept_segments
            suggestion.unique_conversation_count = len(kept_conversations)
            suggestion.segment_count = len(kept_segments)
        self.session.flush()
        return touched
