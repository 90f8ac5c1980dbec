"""
Conversation similarity repository.
"""

import uuid
from typing import List, Optional

from sqlalchemy import desc, or_
from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import ConversationSimilarity


def order_pair(a: uuid.UUID, b: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
    """Normalize a conversation pair so the lower id comes first."""
    return (a, b) if a < b else (b, a)


class ConversationSimilarityRepository(BaseRepository[ConversationSimilarity]):
    """Repository for ConversationSimilarity model."""

    def __init__(self, session: Session):
        super().__init__(ConversationSimilarity, session)

    def get_pair(
        self, run_id: uuid.UUID, a: uuid.UUID, b: uuid.UUID
    ) -> Optional[ConversationSimilarity]:
        low, high = order_pair(a, b)
        return (
            self.session.query(ConversationSimilarity)
            .filter(
                ConversationSimilarity.inference_run_id == run_id,
                ConversationSimilarity.conversation_a_id == low,
                ConversationSimilarity.conversation_b_id == high,
            )
            .first()
        )

    def get_for_conversation(
        self, run_id: uuid.UUID, conversation_id: uuid.UUID, limit: int = 10
    ) -> List[ConversationSimilarity]:
        return (
            self.session.query(ConversationSimilarity)
            .filter(
                ConversationSimilarity.inference_run_id == run_id,
                or_(
                    ConversationSimilarity.conversation_a_id == conversation_id,
                    ConversationSimilarity.conversation_b_id == conversation_id,
                ),
            )
            .order_by(desc(ConversationSimilarity.similarity))
            .limit(limit)
            .all()
        )

    def delete_by_conversations(self, conversation_ids: List[uuid.UUID]) -> int:
        if not conversation_ids:
            return 0
        return (
            self.session.query(ConversationSimilarity)
            .filter(
                or_(
                    ConversationSimilarity.conversation_a_id.in_(conversation_ids),
                    ConversationSimilarity.conversation_b_id.in_(conversation_ids),
                )
            )
            .delete(synchronize_session=False)
        )
