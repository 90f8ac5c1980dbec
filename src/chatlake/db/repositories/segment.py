"""
Segment and segment embedding repositories.
"""

import uuid
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import ConversationSegment, SegmentEmbedding


class SegmentRepository(BaseRepository[ConversationSegment]):
    """Repository for ConversationSegment model."""

    def __init__(self, session: Session):
        super().__init__(ConversationSegment, session)

    def get_by_conversation(self, conversation_id: uuid.UUID) -> List[ConversationSegment]:
        return (
            self.session.query(ConversationSegment)
            .filter(ConversationSegment.conversation_id == conversation_id)
            .order_by(ConversationSegment.segment_index)
            .all()
        )

    def has_segments(self, conversation_id: uuid.UUID) -> bool:
        return (
            self.session.query(ConversationSegment.id)
            .filter(ConversationSegment.conversation_id == conversation_id)
            .first()
            is not None
        )

    def get_by_ids(self, ids: List[uuid.UUID]) -> List[ConversationSegment]:
        if not ids:
            return []
        return (
            self.session.query(ConversationSegment)
            .filter(ConversationSegment.id.in_(ids))
            .order_by(ConversationSegment.id)
            .all()
        )

    def delete_all(self) -> int:
        return self.session.query(ConversationSegment).delete(synchronize_session=False)

    def delete_by_conversations(self, conversation_ids: List[uuid.UUID]) -> int:
        if not conversation_ids:
            return 0
        return (
            self.session.query(ConversationSegment)
            .filter(ConversationSegment.conversation_id.in_(conversation_ids))
            .delete(synchronize_session=False)
        )


class SegmentEmbeddingRepository(BaseRepository[SegmentEmbedding]):
    """Repository for cached segment embeddings."""

    def __init__(self, session: Session):
        super().__init__(SegmentEmbedding, session)

    def get_for_segment(
        self, segment_id: uuid.UUID, embedding_model: str
    ) -> Optional[SegmentEmbedding]:
        return (
            self.session.query(SegmentEmbedding)
            .filter(
                SegmentEmbedding.segment_id == segment_id,
                SegmentEmbedding.embedding_model == embedding_model,
            )
            .first()
        )

    def insert_if_absent(
        self, segment_id: uuid.UUID, embedding_model: str, **kwargs
    ) -> tuple[SegmentEmbedding, bool]:
        return self._insert_if_absent(
            lambda: self.get_for_segment(segment_id, embedding_model),
            segment_id=segment_id,
            embedding_model=embedding_model,
            **kwargs,
        )

    def get_segments_without_valid_embedding(
        self, embedding_model: str
    ) -> List[ConversationSegment]:
        """
        Segments lacking a cached vector whose source hash matches current content.

        Covers both never-embedded segments and segments whose cached entry is stale.
        """
        return (
            self.session.query(ConversationSegment)
            .outerjoin(
                SegmentEmbedding,
                and_(
                    SegmentEmbedding.segment_id == ConversationSegment.id,
                    SegmentEmbedding.embedding_model == embedding_model,
                    SegmentEmbedding.source_content_hash == ConversationSegment.content_hash,
                ),
            )
            .filter(SegmentEmbedding.id.is_(None))
            .order_by(ConversationSegment.id)
            .all()
        )

    def get_stale(self, embedding_model: Optional[str] = None) -> List[SegmentEmbedding]:
        """Entries whose source hash no longer matches their segment's content hash."""
        query = (
            self.session.query(SegmentEmbedding)
            .join(ConversationSegment, ConversationSegment.id == SegmentEmbedding.segment_id)
            .filter(SegmentEmbedding.source_content_hash != ConversationSegment.content_hash)
        )
        if embedding_model is not None:
            query = query.filter(SegmentEmbedding.embedding_model == embedding_model)
        return query.all()

    def get_valid(self, embedding_model: str) -> List[SegmentEmbedding]:
        """All entries for a model that match current segment content, in segment id order."""
        return (
            self.session.query(SegmentEmbedding)
            .join(ConversationSegment, ConversationSegment.id == SegmentEmbedding.segment_id)
            .filter(
                SegmentEmbedding.embedding_model == embedding_model,
                SegmentEmbedding.source_content_hash == ConversationSegment.content_hash,
            )
            .order_by(SegmentEmbedding.segment_id)
            .all()
        )

    def delete_all(self) -> int:
        return self.session.query(SegmentEmbedding).delete(synchronize_session=False)

    def delete_by_segments(self, segment_ids: List[uuid.UUID]) -> int:
        if not segment_ids:
            return 0
        return (
            self.session.query(SegmentEmbedding)
            .filter(SegmentEmbedding.segment_id.in_(segment_ids))
            .delete(synchronize_session=False)
        )
