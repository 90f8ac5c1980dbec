"""
Project topic drift.

A project's conversations are bucketed by first-message time into fixed-size
windows. Each window with enough conversations gets a topic distribution
(mean topic score per topic, normalized to sum to 1) from the latest
completed topics run, and consecutive qualifying windows are compared:

    drift = clamp(1 - cosine(previous, current), 0, 1)

A zero distribution on either side counts as maximum drift (1.0).
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import (
    ConversationTopicRepository,
    InferenceRunRepository,
    ProjectConversationRepository,
    ProjectDriftMetricRepository,
    ProjectRepository,
)
from chatlake.exceptions import ConfigurationError, NotFoundError
from chatlake.inference.runs import RunTracker
from chatlake.models.db import (
    Conversation,
    InferenceRun,
    Project,
    ProjectStatus,
    RunType,
)
from chatlake.utils.dates import ensure_utc, utc_now

logger = logging.getLogger(__name__)

MODEL_NAME = "chatlake.topic-drift"
HIGH_DRIFT_THRESHOLD = 0.3

Window = Tuple[datetime, datetime]


@dataclass
class DriftOptions:
    window_size_days: int = field(default_factory=lambda: settings.drift_window_size_days)
    min_conversations_per_window: int = field(
        default_factory=lambda: settings.drift_min_conversations_per_window
    )
    lookback_days: int = field(default_factory=lambda: settings.drift_lookback_days)
    model_version: str = "1.0.0"

    def feature_config(self) -> dict:
        return {
            "model_name": MODEL_NAME,
            "model_version": self.model_version,
            "window_size_days": self.window_size_days,
            "min_conversations_per_window": self.min_conversations_per_window,
            "lookback_days": self.lookback_days,
        }


@dataclass
class TopicShift:
    topic_label: str
    previous_score: float
    current_score: float
    change: float

    def to_dict(self) -> dict:
        return {
            "topicLabel": self.topic_label,
            "previousScore": self.previous_score,
            "currentScore": self.current_score,
            "change": self.change,
        }


@dataclass
class DriftResult:
    run_id: Optional[uuid.UUID]
    projects_analyzed: int
    metrics_created: int
    high_drift_count: int
    elapsed_seconds: float = 0.0


@dataclass
class DriftMetricView:
    metric_id: uuid.UUID
    window_start: datetime
    window_end: datetime
    drift_score: float
    topic_shifts: List[TopicShift]


@dataclass
class ProjectDriftSummary:
    project_id: uuid.UUID
    project_name: str
    latest_drift_score: float
    average_drift_score: float
    window_count: int
    last_window_end: datetime


def build_windows(
    timestamps: Sequence[datetime], cutoff: datetime, window_size_days: int, now: datetime
) -> List[Window]:
    """
    Consecutive windows from the day of the earliest timestamp after cutoff up to now.

    The first window starts at midnight UTC of that day; windows are
    half-open [start, end).
    """
    recent = sorted(t for t in timestamps if t >= cutoff)
    if not recent:
        return []
    first = recent[0]
    start = datetime(first.year, first.month, first.day, tzinfo=UTC)
    step = timedelta(days=window_size_days)
    windows = []
    while start < now:
        windows.append((start, start + step))
        start += step
    return windows


def topic_distribution(scores: Sequence[Tuple[uuid.UUID, float]]) -> Dict[uuid.UUID, float]:
    """Mean score per topic, normalized so the values sum to 1."""
    grouped: Dict[uuid.UUID, List[float]] = {}
    for topic_id, score in scores:
        grouped.setdefault(topic_id, []).append(score)
    means = {topic_id: sum(v) / len(v) for topic_id, v in grouped.items()}
    total = sum(means.values())
    if total <= 0:
        return {topic_id: 0.0 for topic_id in means}
    return {topic_id: value / total for topic_id, value in means.items()}


def drift_score(previous: Dict[uuid.UUID, float], current: Dict[uuid.UUID, float]) -> float:
    """Cosine distance between two distributions, clamped to [0, 1]."""
    topics = sorted(set(previous) | set(current))
    if not topics:
        return 0.0
    prev = np.array([previous.get(t, 0.0) for t in topics], dtype=np.float64)
    curr = np.array([current.get(t, 0.0) for t in topics], dtype=np.float64)
    prev_norm = np.linalg.norm(prev)
    curr_norm = np.linalg.norm(curr)
    if prev_norm == 0 or curr_norm == 0:
        return 1.0
    cosine = float(np.dot(prev, curr) / (prev_norm * curr_norm))
    return float(np.clip(1.0 - cosine, 0.0, 1.0))


def topic_shifts(
    previous: Dict[uuid.UUID, float],
    current: Dict[uuid.UUID, float],
    labels: Dict[uuid.UUID, str],
) -> List[TopicShift]:
    """Per-topic changes, largest absolute change first."""
    shifts = []
    for topic_id in sorted(set(previous) | set(current)):
        before = previous.get(topic_id, 0.0)
        after = current.get(topic_id, 0.0)
        shifts.append(
            TopicShift(
                topic_label=labels.get(topic_id, f"Topic {topic_id}"),
                previous_score=round(before, 4),
                current_score=round(after, 4),
                change=round(after - before, 4),
            )
        )
    shifts.sort(key=lambda s: abs(s.change), reverse=True)
    return shifts


class DriftEngine:
    """
    Computes and queries ProjectDriftMetrics.

    Args:
        session: Database session
        options: Drift options
        run_tracker: Run lifecycle owner
        now: Clock, injectable for tests
    """

    def __init__(
        self,
        session: Session,
        options: Optional[DriftOptions] = None,
        run_tracker: Optional[RunTracker] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.options = options or DriftOptions()
        self.runs = run_tracker or RunTracker(session)
        self.now = now or utc_now
        self.projects = ProjectRepository(session)
        self.assignments = ProjectConversationRepository(session)
        self.conversation_topics = ConversationTopicRepository(session)
        self.metrics = ProjectDriftMetricRepository(session)
        self.run_repo = InferenceRunRepository(session)

    def _topics_run(self) -> InferenceRun:
        run = self.run_repo.get_latest_completed(RunType.TOPICS)
        if run is None:
            raise ConfigurationError("No completed topics run found; extract topics first")
        return run

    def calculate_drift(self) -> DriftResult:
        """
        Compute drift for every active project with assignments, in one drift run.

        Raises:
            ConfigurationError: If no completed topics run exists
        """
        start_time = time.time()
        project_ids = [
            row[0]
            for row in self.session.query(Project.id)
            .filter(Project.status == ProjectStatus.ACTIVE)
            .order_by(Project.id)
            .all()
        ]
        if not project_ids:
            logger.info("No active projects to analyze for drift")
            return DriftResult(None, 0, 0, 0)

        with self.runs.track(
            RunType.DRIFT,
            model_name=MODEL_NAME,
            model_version=self.options.model_version,
            input_scope="all_projects",
            feature_config=self.options.feature_config(),
            input_description=f"Calculating drift for {len(project_ids)} projects",
        ) as run:
            topics_run = self._topics_run()
            created = high = 0
            for project_id in project_ids:
                project_created, project_high = self._calculate_for_project(
                    run, topics_run, project_id
                )
                created += project_created
                high += project_high
            self.session.commit()
            self.runs.complete(
                run,
                {
                    "projects_analyzed": len(project_ids),
                    "metrics_created": created,
                    "high_drift_count": high,
                    "topics_run_id": str(topics_run.id),
                },
            )

        return DriftResult(run.id, len(project_ids), created, high, time.time() - start_time)

    def calculate_project_drift(self, project_id: uuid.UUID) -> DriftResult:
        """
        Compute drift for one project in its own drift run.

        Raises:
            NotFoundError: If the project does not exist
            ConfigurationError: If no completed topics run exists
        """
        start_time = time.time()
        if self.projects.get(project_id) is None:
            raise NotFoundError("Project", project_id)

        with self.runs.track(
            RunType.DRIFT,
            model_name=MODEL_NAME,
            model_version=self.options.model_version,
            input_scope="project",
            feature_config=self.options.feature_config(),
            input_description=f"Calculating drift for project {project_id}",
        ) as run:
            topics_run = self._topics_run()
            created, high = self._calculate_for_project(run, topics_run, project_id)
            self.session.commit()
            self.runs.complete(
                run,
                {
                    "project_id": str(project_id),
                    "metrics_created": created,
                    "high_drift_count": high,
                    "topics_run_id": str(topics_run.id),
                },
            )

        return DriftResult(run.id, 1, created, high, time.time() - start_time)

    def _calculate_for_project(
        self, run: InferenceRun, topics_run: InferenceRun, project_id: uuid.UUID
    ) -> Tuple[int, int]:
        conversation_ids = [
            a.conversation_id for a in self.assignments.get_current_for_project(project_id)
        ]
        if not conversation_ids:
            return 0, 0

        started = {
            cid: ensure_utc(first)
            for cid, first in self.session.query(Conversation.id, Conversation.first_message_at)
            .filter(Conversation.id.in_(conversation_ids))
            .all()
            if first is not None
        }
        scores = self.conversation_topics.get_for_conversations(conversation_ids, topics_run.id)
        if not scores:
            return 0, 0
        labels = {ct.topic_id: ct.topic.label for ct in scores}

        now = ensure_utc(self.now())
        cutoff = now - timedelta(days=self.options.lookback_days)
        windows = build_windows(
            list(started.values()), cutoff, self.options.window_size_days, now
        )

        distributions = []
        for window_start, window_end in windows:
            members = {cid for cid, ts in started.items() if window_start <= ts < window_end}
            if len(members) < self.options.min_conversations_per_window:
                continue
            distribution = topic_distribution(
                [(ct.topic_id, ct.score) for ct in scores if ct.conversation_id in members]
            )
            if distribution:
                distributions.append((window_start, window_end, distribution))

        created = high = 0
        for (prev_start, prev_end, prev), (start, end, curr) in zip(
            distributions, distributions[1:]
        ):
            score = round(drift_score(prev, curr), 6)
            self.metrics.create(
                inference_run_id=run.id,
                project_id=project_id,
                window_start=start,
                window_end=end,
                drift_score=score,
                details={
                    "previousWindow": {
                        "start": prev_start.isoformat(),
                        "end": prev_end.isoformat(),
                    },
                    "topicShifts": [s.to_dict() for s in topic_shifts(prev, curr, labels)],
                },
            )
            created += 1
            if score >= HIGH_DRIFT_THRESHOLD:
                high += 1

        if created:
            logger.info(f"Project {project_id}: {created} drift windows ({high} high)")
        return created, high

    def get_project_drift(self, project_id: uuid.UUID) -> List[DriftMetricView]:
        """Stored drift windows of a project, newest first."""
        return [
            DriftMetricView(
                metric_id=m.id,
                window_start=ensure_utc(m.window_start),
                window_end=ensure_utc(m.window_end),
                drift_score=m.drift_score,
                topic_shifts=[
                    TopicShift(
                        topic_label=s.get("topicLabel", ""),
                        previous_score=s.get("previousScore", 0.0),
                        current_score=s.get("currentScore", 0.0),
                        change=s.get("change", 0.0),
                    )
                    for s in (m.details or {}).get("topicShifts", [])
                ],
            )
            for m in self.metrics.get_by_project(project_id)
        ]

    def get_high_drift_projects(
        self, limit: int = 10, threshold: Optional[float] = None
    ) -> List[ProjectDriftSummary]:
        """
        Projects ranked by their latest window's drift score.

        Args:
            limit: Maximum projects returned
            threshold: Only include projects whose latest score is at least this
        """
        by_project: Dict[uuid.UUID, list] = {}
        for metric in self.metrics.get_all():
            by_project.setdefault(metric.project_id, []).append(metric)

        summaries = []
        for project_id, metrics in by_project.items():
            latest = max(metrics, key=lambda m: ensure_utc(m.window_end))
            if threshold is not None and latest.drift_score < threshold:
                continue
            project = self.projects.get(project_id)
            summaries.append(
                ProjectDriftSummary(
                    project_id=project_id,
                    project_name=project.name if project else "Unknown",
                    latest_drift_score=latest.drift_score,
                    average_drift_score=round(
                        sum(m.drift_score for m in metrics) / len(metrics), 6
                    ),
                    window_count=len(metrics),
                    last_window_end=ensure_utc(latest.window_end),
                )
            )
        summaries.sort(key=lambda s: (-s.latest_drift_score, str(s.project_id)))
        return summaries[:limit]
