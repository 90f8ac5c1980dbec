"""
Project and project assignment repositories.
"""

import uuid
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import Project, ProjectConversation


class ProjectRepository(BaseRepository[Project]):
    """Repository for Project model."""

    def __init__(self, session: Session):
        super().__init__(Project, session)

    def get_by_key(self, project_key: str) -> Optional[Project]:
        return self.session.query(Project).filter(Project.project_key == project_key).first()

    def list_by_name(self) -> List[Project]:
        return self.session.query(Project).order_by(Project.name).all()


class ProjectConversationRepository(BaseRepository[ProjectConversation]):
    """Repository for conversation-to-project assignments."""

    def __init__(self, session: Session):
        super().__init__(ProjectConversation, session)

    def get_current(
        self, project_id: uuid.UUID, conversation_id: uuid.UUID
    ) -> Optional[ProjectConversation]:
        return (
            self.session.query(ProjectConversation)
            .filter(
                ProjectConversation.project_id == project_id,
                ProjectConversation.conversation_id == conversation_id,
                ProjectConversation.is_current.is_(True),
            )
            .first()
        )

    def insert_current_if_absent(
        self, project_id: uuid.UUID, conversation_id: uuid.UUID, **kwargs: Any
    ) -> tuple[ProjectConversation, bool]:
        """Link a conversation to a project unless a current link already exists."""
        return self._insert_if_absent(
            lambda: self.get_current(project_id, conversation_id),
            project_id=project_id,
            conversation_id=conversation_id,
            is_current=True,
            **kwargs,
        )

    def deactivate_current(self, project_id: uuid.UUID, conversation_id: uuid.UUID) -> int:
        """Mark existing current assignments as history. Returns rows changed."""
        rows = (
            self.session.query(ProjectConversation)
            .filter(
                ProjectConversation.project_id == project_id,
                ProjectConversation.conversation_id == conversation_id,
                ProjectConversation.is_current.is_(True),
            )
            .all()
        )
        for row in rows:
            row.is_current = False
        self.session.flush()
        return len(rows)

    def get_current_for_project(self, project_id: uuid.UUID) -> List[ProjectConversation]:
        return (
            self.session.query(ProjectConversation)
            .filter(
                ProjectConversation.project_id == project_id,
                ProjectConversation.is_current.is_(True),
            )
            .all()
        )

    def get_project_ids_with_assignments(self) -> List[uuid.UUID]:
        return [
            row[0]
            for row in self.session.query(ProjectConversation.project_id)
            .filter(ProjectConversation.is_current.is_(True))
            .distinct()
            .all()
        ]

    def delete_by_conversations(self, conversation_ids: List[uuid.UUID]) -> int:
        if not conversation_ids:
            return 0
        return (
            self.session.query(ProjectConversation)
            .filter(ProjectConversation.conversation_id.in_(conversation_ids))
            .delete(synchronize_session=False)
        )
