"""
Conversation, message and provenance repositories.
"""

import uuid
from typing import Any, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import (
    Conversation,
    ConversationArtifactMap,
    ConversationSegment,
    Message,
)


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation model."""

    def __init__(self, session: Session):
        super().__init__(Conversation, session)

    def get_by_key(self, conversation_key: str) -> Optional[Conversation]:
        return (
            self.session.query(Conversation)
            .filter(Conversation.conversation_key == conversation_key)
            .first()
        )

    def insert_if_absent(
        self, conversation_key: str, **kwargs: Any
    ) -> tuple[Conversation, bool]:
        """
        Create the conversation for a key unless it already exists.

        Returns:
            Tuple of (conversation, inserted)
        """
        return self._insert_if_absent(
            lambda: self.get_by_key(conversation_key),
            conversation_key=conversation_key,
            **kwargs,
        )

    def get_unsegmented_ids(self) -> List[uuid.UUID]:
        """Ids of conversations that have no segments yet, in id order."""
        segmented = self.session.query(ConversationSegment.conversation_id).distinct()
        return [
            row[0]
            for row in self.session.query(Conversation.id)
            .filter(Conversation.id.not_in(segmented))
            .order_by(Conversation.id)
            .all()
        ]

    def get_ids_created_by_batch(self, batch_id: uuid.UUID) -> List[uuid.UUID]:
        return [
            row[0]
            for row in self.session.query(Conversation.id)
            .filter(Conversation.created_from_import_batch_id == batch_id)
            .all()
        ]

    def get_by_ids(self, ids: List[uuid.UUID]) -> List[Conversation]:
        if not ids:
            return []
        return self.session.query(Conversation).filter(Conversation.id.in_(ids)).all()


class MessageRepository(BaseRepository[Message]):
    """Repository for Message model."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def find(
        self, conversation_id: uuid.UUID, role: str, sequence_index: int, content_hash: str
    ) -> Optional[Message]:
        return (
            self.session.query(Message)
            .filter(
                Message.conversation_id == conversation_id,
                Message.role == role,
                Message.sequence_index == sequence_index,
                Message.content_hash == content_hash,
            )
            .first()
        )

    def insert_if_absent(
        self,
        conversation_id: uuid.UUID,
        role: str,
        sequence_index: int,
        content_hash: str,
        **kwargs: Any,
    ) -> tuple[Message, bool]:
        """
        Insert a message unless the identical message is already stored.

        Identity is (conversation_id, role, sequence_index, content_hash).

        Returns:
            Tuple of (message, inserted)
        """
        return self._insert_if_absent(
            lambda: self.find(conversation_id, role, sequence_index, content_hash),
            conversation_id=conversation_id,
            role=role,
            sequence_index=sequence_index,
            content_hash=content_hash,
            **kwargs,
        )

    def get_by_conversation(self, conversation_id: uuid.UUID) -> List[Message]:
        return (
            self.session.query(Message)
            .filter(Message.conversation_id == conversation_id)
            .order_by(Message.sequence_index, Message.created_at)
            .all()
        )

    def count_by_conversation(self, conversation_id: uuid.UUID) -> int:
        return (
            self.session.query(func.count(Message.id))
            .filter(Message.conversation_id == conversation_id)
            .scalar()
            or 0
        )

    def get_first_by_role(
        self, conversation_id: uuid.UUID, role: str
    ) -> Optional[Message]:
        return (
            self.session.query(Message)
            .filter(Message.conversation_id == conversation_id, Message.role == role)
            .order_by(Message.sequence_index)
            .first()
        )

    def delete_by_conversations(self, conversation_ids: List[uuid.UUID]) -> int:
        if not conversation_ids:
            return 0
        return (
            self.session.query(Message)
            .filter(Message.conversation_id.in_(conversation_ids))
            .delete(synchronize_session=False)
        )


class ConversationArtifactMapRepository(BaseRepository[ConversationArtifactMap]):
    """Repository for conversation provenance edges."""

    def __init__(self, session: Session):
        super().__init__(ConversationArtifactMap, session)

    def insert_if_absent(
        self, conversation_id: uuid.UUID, raw_artifact_id: uuid.UUID
    ) -> tuple[ConversationArtifactMap, bool]:
        return self._insert_if_absent(
            lambda: self.session.get(
                ConversationArtifactMap, (conversation_id, raw_artifact_id)
            ),
            conversation_id=conversation_id,
            raw_artifact_id=raw_artifact_id,
        )
