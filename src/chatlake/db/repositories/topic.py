"""
Topic and drift repositories.
"""

import uuid
from typing import List

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import ConversationTopic, ProjectDriftMetric, Topic


class TopicRepository(BaseRepository[Topic]):
    """Repository for Topic model."""

    def __init__(self, session: Session):
        super().__init__(Topic, session)

    def get_by_run(self, run_id: uuid.UUID) -> List[Topic]:
        return (
            self.session.query(Topic)
            .filter(Topic.inference_run_id == run_id)
            .order_by(Topic.topic_index)
            .all()
        )

    def conversation_counts(self, run_id: uuid.UUID) -> dict[uuid.UUID, int]:
        """Distinct conversation count per topic of a run."""
        rows = (
            self.session.query(
                ConversationTopic.topic_id,
                func.count(func.distinct(ConversationTopic.conversation_id)),
            )
            .filter(ConversationTopic.inference_run_id == run_id)
            .group_by(ConversationTopic.topic_id)
            .all()
        )
        return {topic_id: count for topic_id, count in rows}


class ConversationTopicRepository(BaseRepository[ConversationTopic]):
    """Repository for ConversationTopic model."""

    def __init__(self, session: Session):
        super().__init__(ConversationTopic, session)

    def get_by_conversation(
        self, conversation_id: uuid.UUID, run_id: uuid.UUID
    ) -> List[ConversationTopic]:
        return (
            self.session.query(ConversationTopic)
            .filter(
                ConversationTopic.conversation_id == conversation_id,
                ConversationTopic.inference_run_id == run_id,
            )
            .order_by(desc(ConversationTopic.score))
            .all()
        )

    def get_for_conversations(
        self, conversation_ids: List[uuid.UUID], run_id: uuid.UUID
    ) -> List[ConversationTopic]:
        if not conversation_ids:
            return []
        return (
            self.session.query(ConversationTopic)
            .filter(
                ConversationTopic.conversation_id.in_(conversation_ids),
                ConversationTopic.inference_run_id == run_id,
            )
            .all()
        )


class ProjectDriftMetricRepository(BaseRepository[ProjectDriftMetric]):
    """Repository for ProjectDriftMetric model."""

    def __init__(self, session: Session):
        super().__init__(ProjectDriftMetric, session)

    def get_by_project(self, project_id: uuid.UUID) -> List[ProjectDriftMetric]:
        """Drift history of a project, newest window first."""
        return (
            self.session.query(ProjectDriftMetric)
            .filter(ProjectDriftMetric.project_id == project_id)
            .order_by(desc(ProjectDriftMetric.window_end))
            .all()
        )
