"""
Tests for the project suggestion review lifecycle.
"""

import uuid

import pytest

from chatlake.db.repositories import ProjectConversationRepository, ProjectSuggestionRepository
from chatlake.exceptions import NotFoundError, SuggestionStateError
from chatlake.inference.suggestions import SuggestionService
from chatlake.models.db import (
    AssignedBy,
    Project,
    ProjectConversation,
    ProjectStatus,
    RunType,
    SuggestionStatus,
)
from chatlake.services.projects import ProjectService


@pytest.fixture
def suggestion_factory(db_session, run_factory):
    """Create a pending ProjectSuggestion over the given conversations."""

    def _create(conversations, name: str = "Home Garden", key: str = "home-garden", confidence: float = 0.8):
        run = run_factory(RunType.CLUSTERING)
        return ProjectSuggestionRepository(db_session).create(
            inference_run_id=run.id,
            suggested_project_key=key,
            suggested_name=name,
            summary=f"{len(conversations)} conversations",
            confidence=confidence,
            status=SuggestionStatus.PENDING,
            conversation_ids=[str(c.id) for c in conversations],
            segment_ids=[],
            unique_conversation_count=len(conversations),
            segment_count=0,
        )

    return _create


@pytest.fixture
def two_conversations(conversation_factory):
    return [
        conversation_factory([("user", "Plant tomatoes\nsecond line"), ("assistant", "Sure")], title="T"),
        conversation_factory([("user", "Water seedlings")], title="W"),
    ]


class TestAccept:
    """Tests for accepting suggestions."""

    def test_accept_creates_project_and_assignments(self, db_session, suggestion_factory, two_conversations):
        suggestion = suggestion_factory(two_conversations)
        service = SuggestionService(db_session)

        project = service.accept(suggestion.id)

        assert project.name == "Home Garden"
        assert project.project_key == "home-garden"
        assert project.is_system_generated is True
        assert project.status == ProjectStatus.ACTIVE
        assert suggestion.status == SuggestionStatus.ACCEPTED
        assert suggestion.resolved_project_id == project.id
        assert suggestion.resolved_at is not None
        assignments = ProjectConversationRepository(db_session).get_current_for_project(project.id)
        assert {a.conversation_id for a in assignments} == {c.id for c in two_conversations}
        for assignment in assignments:
            assert assignment.assigned_by == AssignedBy.SYSTEM
            assert assignment.inference_run_id == suggestion.inference_run_id
            assert assignment.confidence == 0.8

    def test_accept_twice_raises(self, db_session, suggestion_factory, two_conversations):
        suggestion = suggestion_factory(two_conversations)
        service = SuggestionService(db_session)
        service.accept(suggestion.id)

        with pytest.raises(SuggestionStateError) as exc_info:
            service.accept(suggestion.id)

        assert exc_info.value.status == "accepted"
        assert db_session.query(Project).count() == 1

    def test_project_key_collision_gets_suffix(self, db_session, suggestion_factory, two_conversations):
        service = SuggestionService(db_session)
        first = service.accept(suggestion_factory(two_conversations).id)
        second = service.accept(suggestion_factory(two_conversations).id)

        assert first.project_key == "home-garden"
        assert second.project_key == "home-garden-2"

    def test_missing_suggestion(self, db_session):
        with pytest.raises(NotFoundError):
            SuggestionService(db_session).accept(uuid.uuid4())


class TestReject:
    """Tests for rejecting suggestions."""

    def test_reject_is_terminal(self, db_session, suggestion_factory, two_conversations):
        suggestion = suggestion_factory(two_conversations)
        service = SuggestionService(db_session)

        service.reject(suggestion.id)

        assert suggestion.status == SuggestionStatus.REJECTED
        assert db_session.query(Project).count() == 0
        with pytest.raises(SuggestionStateError):
            service.accept(suggestion.id)
        with pytest.raises(SuggestionStateError):
            service.reject(suggestion.id)


class TestMerge:
    """Tests for merging suggestions into existing projects."""

    def test_merge_assigns_into_target(self, db_session, suggestion_factory, two_conversations):
        target = ProjectService(db_session).create("My Garden")
        suggestion = suggestion_factory(two_conversations)

        project = SuggestionService(db_session).merge(suggestion.id, target.id)

        assert project.id == target.id
        assert suggestion.status == SuggestionStatus.MERGED
        assert suggestion.resolved_project_id == target.id
        assert len(ProjectConversationRepository(db_session).get_current_for_project(target.id)) == 2

    def test_merge_keeps_history_of_previous_assignment(
        self, db_session, suggestion_factory, two_conversations
    ):
        projects = ProjectService(db_session)
        target = projects.create("My Garden")
        projects.add_conversation(target.id, two_conversations[0].id)
        suggestion = suggestion_factory(two_conversations)

        SuggestionService(db_session).merge(suggestion.id, target.id)

        rows = (
            db_session.query(ProjectConversation)
            .filter_by(project_id=target.id, conversation_id=two_conversations[0].id)
            .all()
        )
        assert len(rows) == 2
        assert sum(1 for r in rows if r.is_current) == 1
        current = next(r for r in rows if r.is_current)
        assert current.assigned_by == AssignedBy.SYSTEM

    def test_merge_into_missing_project(self, db_session, suggestion_factory, two_conversations):
        suggestion = suggestion_factory(two_conversations)

        with pytest.raises(NotFoundError):
            SuggestionService(db_session).merge(suggestion.id, uuid.uuid4())

        assert suggestion.status == SuggestionStatus.PENDING

    def test_merge_after_accept_raises(self, db_session, suggestion_factory, two_conversations):
        target = ProjectService(db_session).create("My Garden")
        suggestion = suggestion_factory(two_conversations)
        service = SuggestionService(db_session)
        service.accept(suggestion.id)

        with pytest.raises(SuggestionStateError):
            service.merge(suggestion.id, target.id)


class TestQueries:
    """Tests for listing and previews."""

    def test_list_by_status(self, db_session, suggestion_factory, two_conversations):
        pending = suggestion_factory(two_conversations)
        rejected = suggestion_factory(two_conversations, key="other")
        service = SuggestionService(db_session)
        service.reject(rejected.id)

        assert [s.id for s in service.get_pending()] == [pending.id]
        assert [s.id for s in service.list_by_status(SuggestionStatus.REJECTED)] == [rejected.id]

    def test_suggestion_conversations_preview(self, db_session, suggestion_factory, two_conversations):
        suggestion = suggestion_factory(two_conversations)

        previews = SuggestionService(db_session).get_suggestion_conversations(suggestion.id)

        titles = sorted(p.title for p in previews)
        assert titles == ["Plant tomatoes", "Water seedlings"]
        counts = {p.title: p.message_count for p in previews}
        assert counts == {"Plant tomatoes": 2, "Water seedlings": 1}
