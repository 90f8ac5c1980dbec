"""
Tests for project topic drift.
"""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from chatlake.exceptions import ConfigurationError, NotFoundError
from chatlake.inference.drift import (
    DriftEngine,
    DriftOptions,
    build_windows,
    drift_score,
    topic_distribution,
    topic_shifts,
)
from chatlake.models.db import (
    ConversationTopic,
    InferenceRun,
    InferenceRunStatus,
    ProjectDriftMetric,
    RunType,
    Topic,
)
from chatlake.services.projects import ProjectService

NOW = datetime(2024, 3, 1, tzinfo=UTC)
WEEK1 = datetime(2024, 1, 1, 9, tzinfo=UTC)
WEEK2 = datetime(2024, 1, 8, 9, tzinfo=UTC)
WEEK3 = datetime(2024, 1, 15, 9, tzinfo=UTC)


def _engine(db_session) -> DriftEngine:
    options = DriftOptions(window_size_days=7, min_conversations_per_window=2, lookback_days=90)
    return DriftEngine(db_session, options, now=lambda: NOW)


@pytest.fixture
def topics_run(db_session, run_factory):
    """A completed topics run with two topics."""
    run = run_factory(RunType.TOPICS)
    garden = Topic(inference_run_id=run.id, topic_index=0, label="garden, soil", keywords=["garden"])
    backup = Topic(inference_run_id=run.id, topic_index=1, label="backup, rsync", keywords=["backup"])
    db_session.add_all([garden, backup])
    db_session.flush()
    return run, garden, backup


@pytest.fixture
def project_with_history(db_session, conversation_factory, topics_run):
    """
    A project that talks about gardening in week one and backups in week two.

    Week three has a single conversation, below the per-window minimum.
    """
    run, garden, backup = topics_run
    service = ProjectService(db_session)
    project = service.create("Home")

    plan = [
        (WEEK1, 0.9, 0.1),
        (WEEK1 + timedelta(hours=2), 0.8, 0.2),
        (WEEK2, 0.1, 0.9),
        (WEEK2 + timedelta(hours=2), 0.2, 0.8),
        (WEEK3, 0.5, 0.5),
    ]
    for index, (started, garden_score, backup_score) in enumerate(plan):
        conversation = conversation_factory([("user", f"message {index}")], first_message_at=started)
        service.add_conversation(project.id, conversation.id)
        db_session.add_all(
            [
                ConversationTopic(
                    inference_run_id=run.id,
                    conversation_id=conversation.id,
                    topic_id=garden.id,
                    score=garden_score,
                ),
                ConversationTopic(
                    inference_run_id=run.id,
                    conversation_id=conversation.id,
                    topic_id=backup.id,
                    score=backup_score,
                ),
            ]
        )
    db_session.flush()
    return project


class TestDriftMath:
    """Tests for the window and distance helpers."""

    def test_build_windows_start_at_midnight(self):
        timestamps = [datetime(2024, 1, 3, 15, tzinfo=UTC), datetime(2024, 1, 10, tzinfo=UTC)]

        windows = build_windows(
            timestamps,
            cutoff=datetime(2024, 1, 1, tzinfo=UTC),
            window_size_days=7,
            now=datetime(2024, 1, 20, tzinfo=UTC),
        )

        assert [start.day for start, _ in windows] == [3, 10, 17]
        assert all(end - start == timedelta(days=7) for start, end in windows)

    def test_build_windows_ignores_old_timestamps(self):
        windows = build_windows(
            [datetime(2023, 1, 1, tzinfo=UTC)],
            cutoff=datetime(2024, 1, 1, tzinfo=UTC),
            window_size_days=7,
            now=NOW,
        )

        assert windows == []

    def test_topic_distribution_normalized_means(self):
        a, b = uuid.uuid4(), uuid.uuid4()

        distribution = topic_distribution([(a, 0.4), (a, 0.2), (b, 0.3)])

        assert distribution == {a: pytest.approx(0.5), b: pytest.approx(0.5)}

    def test_topic_distribution_all_zero(self):
        a = uuid.uuid4()

        assert topic_distribution([(a, 0.0)]) == {a: 0.0}

    def test_drift_score_bounds(self):
        a, b = uuid.uuid4(), uuid.uuid4()

        assert drift_score({a: 0.5, b: 0.5}, {a: 0.5, b: 0.5}) == pytest.approx(0.0)
        assert drift_score({a: 1.0}, {b: 1.0}) == pytest.approx(1.0)
        assert drift_score({a: 0.0}, {a: 1.0}) == 1.0
        assert drift_score({}, {}) == 0.0

    def test_drift_score_partial_overlap(self):
        """Topics missing on one side count as zero in the cosine distance."""
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

        score = drift_score({a: 0.6, b: 0.4}, {b: 0.5, c: 0.5})

        # dot = 0.4 * 0.5; norms are sqrt(0.52) and sqrt(0.5)
        assert score == pytest.approx(1.0 - 0.2 / (0.52 * 0.5) ** 0.5)
        assert type(score) is float
        assert drift_score({a: 0.6, b: 0.4}, {b: 0.5, c: 0.5}) == drift_score(
            {b: 0.5, c: 0.5}, {a: 0.6, b: 0.4}
        )

    def test_topic_shifts_largest_change_first(self):
        a, b = uuid.uuid4(), uuid.uuid4()

        shifts = topic_shifts({a: 0.5, b: 0.5}, {a: 0.6, b: 0.1}, {a: "garden", b: "backup"})

        assert [s.topic_label for s in shifts] == ["backup", "garden"]
        assert shifts[0].change == pytest.approx(-0.4)


class TestDriftEngine:
    """Tests for DriftEngine."""

    def test_no_projects(self, db_session):
        result = _engine(db_session).calculate_drift()

        assert result.run_id is None
        assert result.projects_analyzed == 0

    def test_requires_topics_run(self, db_session):
        ProjectService(db_session).create("Lonely")

        with pytest.raises(ConfigurationError):
            _engine(db_session).calculate_drift()

        run = db_session.query(InferenceRun).filter_by(run_type=RunType.DRIFT).one()
        assert run.status == InferenceRunStatus.FAILED

    def test_calculate_drift(self, db_session, project_with_history):
        result = _engine(db_session).calculate_drift()

        assert result.projects_analyzed == 1
        assert result.metrics_created == 1
        assert result.high_drift_count == 1

        metric = db_session.query(ProjectDriftMetric).filter_by(inference_run_id=result.run_id).one()
        assert metric.project_id == project_with_history.id
        assert 0.3 <= metric.drift_score <= 1.0
        assert metric.details["previousWindow"]["start"].startswith("2024-01-01")

        run = db_session.get(InferenceRun, result.run_id)
        assert run.status == InferenceRunStatus.COMPLETED
        assert run.metrics["metrics_created"] == 1

    def test_project_without_assignments_has_no_metrics(self, db_session, topics_run):
        ProjectService(db_session).create("Empty")

        result = _engine(db_session).calculate_drift()

        assert result.projects_analyzed == 1
        assert result.metrics_created == 0

    def test_calculate_project_drift(self, db_session, project_with_history):
        result = _engine(db_session).calculate_project_drift(project_with_history.id)

        assert result.metrics_created == 1
        run = db_session.get(InferenceRun, result.run_id)
        assert run.input_scope == "project"

    def test_calculate_project_drift_missing(self, db_session):
        with pytest.raises(NotFoundError):
            _engine(db_session).calculate_project_drift(uuid.uuid4())

    def test_get_project_drift(self, db_session, project_with_history):
        engine = _engine(db_session)
        engine.calculate_drift()

        windows = engine.get_project_drift(project_with_history.id)

        assert len(windows) == 1
        window = windows[0]
        assert window.window_start == datetime(2024, 1, 8, tzinfo=UTC)
        assert window.window_end == datetime(2024, 1, 15, tzinfo=UTC)
        assert {s.topic_label for s in window.topic_shifts} == {"garden, soil", "backup, rsync"}

    def test_get_high_drift_projects(self, db_session, project_with_history):
        engine = _engine(db_session)
        engine.calculate_drift()

        summaries = engine.get_high_drift_projects()

        assert [s.project_name for s in summaries] == ["Home"]
        assert summaries[0].window_count == 1
        assert engine.get_high_drift_projects(threshold=1.01) == []
