"""
Manual project management.

Projects created here are user-owned (is_system_generated False). Methods
flush but do not commit; callers own the transaction.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from chatlake.db.repositories import (
    ConversationRepository,
    ProjectConversationRepository,
    ProjectRepository,
)
from chatlake.exceptions import NotFoundError
from chatlake.inference.naming import slugify
from chatlake.models.db import AssignedBy, Project, ProjectStatus

logger = logging.getLogger(__name__)


@dataclass
class ProjectListing:
    project: Project
    conversation_count: int


class ProjectService:
    """Create, rename, archive projects and manage their conversations."""

    def __init__(self, session: Session):
        self.session = session
        self.projects = ProjectRepository(session)
        self.assignments = ProjectConversationRepository(session)
        self.conversations = ConversationRepository(session)

    def get(self, project_id: uuid.UUID) -> Project:
        project = self.projects.get(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    def _unique_key(self, name: str) -> str:
        base = slugify(name)
        key, suffix = base, 2
        while self.projects.get_by_key(key) is not None:
            key = f"{base}-{suffix}"
            suffix += 1
        return key

    def create(self, name: str, description: Optional[str] = None) -> Project:
        name = name.strip()
        if not name:
            raise ValueError("Project name must not be empty")
        project = self.projects.create(
            project_key=self._unique_key(name),
            name=name,
            description=description,
            status=ProjectStatus.ACTIVE,
            is_system_generated=False,
        )
        logger.info(f"Created project '{project.name}' ({project.project_key})")
        return project

    def rename(self, project_id: uuid.UUID, name: str) -> Project:
        project = self.get(project_id)
        name = name.strip()
        if not name:
            raise ValueError("Project name must not be empty")
        return self.projects.update(project, name=name)

    def archive(self, project_id: uuid.UUID) -> Project:
        project = self.get(project_id)
        return self.projects.update(project, status=ProjectStatus.ARCHIVED)

    def add_conversation(
        self,
        project_id: uuid.UUID,
        conversation_id: uuid.UUID,
        assigned_by: Union[AssignedBy, str] = AssignedBy.USER,
    ) -> bool:
        """
        Assign a conversation to a project.

        Returns:
            True if a new current assignment was written, False if one existed

        Raises:
            NotFoundError: If the project or conversation does not exist
        """
        project = self.get(project_id)
        if self.conversations.get(conversation_id) is None:
            raise NotFoundError("Conversation", conversation_id)
        _, inserted = self.assignments.insert_current_if_absent(
            project.id, conversation_id, assigned_by=AssignedBy(assigned_by)
        )
        return inserted

    def remove_conversation(self, project_id: uuid.UUID, conversation_id: uuid.UUID) -> bool:
        """End the current assignment, keeping it as history. False if there was none."""
        self.get(project_id)
        return self.assignments.deactivate_current(project_id, conversation_id) > 0

    def list(self, include_archived: bool = True) -> List[ProjectListing]:
        listings = []
        for project in self.projects.list_by_name():
            if not include_archived and project.status == ProjectStatus.ARCHIVED:
                continue
            count = len(self.assignments.get_current_for_project(project.id))
            listings.append(ProjectListing(project=project, conversation_count=count))
        return listings
