"""
Project suggestion lifecycle.

A suggestion starts pending and moves exactly once to accepted, rejected or
merged. The transition is claimed with a conditional UPDATE on the pending
status, so two reviewers racing on the same suggestion cannot both win.

Methods flush but do not commit; the caller owns the transaction.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from chatlake.db.repositories import (
    ConversationRepository,
    MessageRepository,
    ProjectConversationRepository,
    ProjectRepository,
    ProjectSuggestionRepository,
)
from chatlake.exceptions import NotFoundError, SuggestionStateError
from chatlake.models.db import (
    AssignedBy,
    Project,
    ProjectStatus,
    ProjectSuggestion,
    SuggestionStatus,
)
from chatlake.utils.dates import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def conversation_title(
    messages: MessageRepository, conversation_id: uuid.UUID, fallback: Optional[str] = None
) -> str:
    """First line of the first user message (80 chars max), else the stored title."""
    first_user = messages.get_first_by_role(conversation_id, "user")
    if first_user is not None:
        line = first_user.content.strip().split("\n", 1)[0].strip()
        if line:
            return line[:80] + "..." if len(line) > 80 else line
    return fallback or "(untitled)"


@dataclass
class SuggestedConversation:
    """Preview of one conversation inside a suggestion."""

    conversation_id: uuid.UUID
    title: str
    message_count: int
    first_message_at: Optional[datetime]


class SuggestionService:
    """Review operations on ProjectSuggestions."""

    def __init__(self, session: Session):
        self.session = session
        self.suggestions = ProjectSuggestionRepository(session)
        self.projects = ProjectRepository(session)
        self.assignments = ProjectConversationRepository(session)
        self.conversations = ConversationRepository(session)
        self.messages = MessageRepository(session)

    def get(self, suggestion_id: uuid.UUID) -> ProjectSuggestion:
        suggestion = self.suggestions.get(suggestion_id)
        if suggestion is None:
            raise NotFoundError("Suggestion", suggestion_id)
        return suggestion

    def list_by_status(self, status: SuggestionStatus) -> List[ProjectSuggestion]:
        return self.suggestions.get_by_status(status)

    def get_pending(self) -> List[ProjectSuggestion]:
        return self.suggestions.get_by_status(SuggestionStatus.PENDING)

    def _claim(
        self, suggestion: ProjectSuggestion, new_status: SuggestionStatus, action: str
    ) -> None:
        """Move a pending suggestion to new_status, or raise if it is no longer pending."""
        now = utc_now()
        updated = (
            self.session.query(ProjectSuggestion)
            .filter(
                ProjectSuggestion.id == suggestion.id,
                ProjectSuggestion.status == SuggestionStatus.PENDING,
            )
            .update(
                {
                    ProjectSuggestion.status: new_status,
                    ProjectSuggestion.resolved_at: now,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            self.session.refresh(suggestion)
            raise SuggestionStateError(suggestion.id, suggestion.status.value, action)
        self.session.refresh(suggestion)

    def _available_key(self, key: Optional[str]) -> Optional[str]:
        if not key:
            return None
        candidate, suffix = key, 2
        while self.projects.get_by_key(candidate) is not None:
            candidate = f"{key}-{suffix}"
            suffix += 1
        return candidate

    def accept(self, suggestion_id: uuid.UUID) -> Project:
        """
        Accept a pending suggestion.

        Creates one system-generated Project and assigns every conversation
        of the suggestion to it, recording the owning run and confidence.

        Raises:
            NotFoundError: If the suggestion does not exist
            SuggestionStateError: If the suggestion is not pending
        """
        suggestion = self.get(suggestion_id)
        self._claim(suggestion, SuggestionStatus.ACCEPTED, "accept")

        project = self.projects.create(
            project_key=self._available_key(suggestion.suggested_project_key),
            name=suggestion.suggested_name,
            description=suggestion.summary,
            status=ProjectStatus.ACTIVE,
            is_system_generated=True,
        )
        for conversation_id in suggestion.conversation_uuids:
            self.assignments.insert_current_if_absent(
                project.id,
                conversation_id,
                assigned_by=AssignedBy.SYSTEM,
                inference_run_id=suggestion.inference_run_id,
                confidence=suggestion.confidence,
            )

        suggestion.resolved_project_id = project.id
        self.session.flush()
        logger.info(
            f"Accepted suggestion {suggestion.id} as project '{project.name}' "
            f"({len(suggestion.conversation_ids)} conversations)"
        )
        return project

    def reject(self, suggestion_id: uuid.UUID) -> ProjectSuggestion:
        """
        Reject a pending suggestion. Rejection is terminal.

        Raises:
            NotFoundError: If the suggestion does not exist
            SuggestionStateError: If the suggestion is not pending
        """
        suggestion = self.get(suggestion_id)
        self._claim(suggestion, SuggestionStatus.REJECTED, "reject")
        self.session.flush()
        logger.info(f"Rejected suggestion {suggestion.id}")
        return suggestion

    def merge(self, suggestion_id: uuid.UUID, target_project_id: uuid.UUID) -> Project:
        """
        Merge a pending suggestion's conversations into an existing project.

        Any current assignment of a member conversation in the target project
        becomes history before the new assignment is written.

        Raises:
            NotFoundError: If the suggestion or target project does not exist
            SuggestionStateError: If the suggestion is not pending
        """
        suggestion = self.get(suggestion_id)
        project = self.projects.get(target_project_id)
        if project is None:
            raise NotFoundError("Project", target_project_id)

        self._claim(suggestion, SuggestionStatus.MERGED, "merge")
        for conversation_id in suggestion.conversation_uuids:
            self.assignments.deactivate_current(project.id, conversation_id)
            self.assignments.create(
                project_id=project.id,
                conversation_id=conversation_id,
                assigned_by=AssignedBy.SYSTEM,
                inference_run_id=suggestion.inference_run_id,
                confidence=suggestion.confidence,
                is_current=True,
                assigned_at=utc_now(),
            )

        suggestion.resolved_project_id = project.id
        self.session.flush()
        logger.info(f"Merged suggestion {suggestion.id} into project '{project.name}'")
        return project

    def get_suggestion_conversations(
        self, suggestion_id: uuid.UUID
    ) -> List[SuggestedConversation]:
        """Previews of a suggestion's conversations, oldest first."""
        suggestion = self.get(suggestion_id)
        previews = []
        for conversation in self.conversations.get_by_ids(suggestion.conversation_uuids):
            previews.append(
                SuggestedConversation(
                    conversation_id=conversation.id,
                    title=conversation_title(self.messages, conversation.id, conversation.title),
                    message_count=self.messages.count_by_conversation(conversation.id),
                    first_message_at=ensure_utc(conversation.first_message_at),
                )
            )
        previews.sort(
            key=lambda p: (p.first_message_at is None, p.first_message_at or _EPOCH)
        )
        return previews

