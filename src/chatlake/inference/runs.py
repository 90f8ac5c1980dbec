"""
Inference run unit of work.

Every derived computation (segmentation, embedding, clustering, similarity,
topics, drift) executes inside exactly one InferenceRun. RunTracker owns the
run's lifecycle so the engines never touch status fields directly:

    tracker = RunTracker(session)
    with tracker.track(RunType.CLUSTERING, "hdbscan", "1.0.0", "all_segments", config) as run:
        ...
        tracker.complete(run, {"clusters": 4})

Exiting the block with an exception rolls back the unit's pending writes,
marks the run failed with the error message and re-raises. Exiting normally
completes a run that is still running.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

from sqlalchemy.orm import Session

from chatlake.db.repositories import InferenceRunRepository
from chatlake.exceptions import RunStateError
from chatlake.models.db import InferenceRun, InferenceRunStatus, RunType
from chatlake.utils.dates import utc_now
from chatlake.utils.hashing import calculate_config_hash

logger = logging.getLogger(__name__)


class RunTracker:
    """Creates, completes and fails InferenceRuns."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = InferenceRunRepository(session)

    def start(
        self,
        run_type: RunType,
        model_name: str,
        model_version: str,
        input_scope: str,
        feature_config: dict[str, Any],
        input_description: Optional[str] = None,
    ) -> InferenceRun:
        """
        Create a running InferenceRun and commit it so it is visible while work proceeds.

        Args:
            run_type: Kind of computation
            model_name: Model or algorithm name
            model_version: Version of the algorithm or model
            input_scope: What the run reads (e.g. "all_conversations")
            feature_config: Full configuration; hashed into feature_config_hash
            input_description: Optional free-text description

        Returns:
            The persisted run
        """
        run = self.repo.create(
            run_type=run_type,
            model_name=model_name,
            model_version=model_version,
            input_scope=input_scope,
            input_description=input_description,
            feature_config_hash=calculate_config_hash(feature_config),
            status=InferenceRunStatus.RUNNING,
            started_at=utc_now(),
        )
        self.session.commit()
        logger.info(f"Started {run_type.value} run {run.id} ({model_name} {model_version})")
        return run

    def complete(
        self, run: InferenceRun, metrics: Optional[dict[str, Any]] = None
    ) -> InferenceRun:
        """Mark a run completed with its metrics and commit."""
        self._ensure_running(run)
        run.status = InferenceRunStatus.COMPLETED
        run.completed_at = utc_now()
        run.metrics = dict(metrics or {})
        self.session.commit()
        logger.info(f"Completed {run.run_type.value} run {run.id}: {run.metrics}")
        return run

    def fail(self, run: InferenceRun, error_message: str) -> InferenceRun:
        """Mark a run failed, recording the error in its metrics, and commit."""
        self._ensure_running(run)
        run.status = InferenceRunStatus.FAILED
        run.completed_at = utc_now()
        run.metrics = {**(run.metrics or {}), "error": error_message}
        self.session.commit()
        logger.error(f"{run.run_type.value} run {run.id} failed: {error_message}")
        return run

    @contextmanager
    def track(
        self,
        run_type: RunType,
        model_name: str,
        model_version: str,
        input_scope: str,
        feature_config: dict[str, Any],
        input_description: Optional[str] = None,
    ) -> Iterator[InferenceRun]:
        run = self.start(
            run_type,
            model_name,
            model_version,
            input_scope,
            feature_config,
            input_description=input_description,
        )
        try:
            yield run
        except Exception as e:
            self.session.rollback()
            if run.status == InferenceRunStatus.RUNNING:
                self.fail(run, str(e) or type(e).__name__)
            raise
        if run.status == InferenceRunStatus.RUNNING:
            self.complete(run, run.metrics)

    def _ensure_running(self, run: InferenceRun) -> None:
        if run.status != InferenceRunStatus.RUNNING:
            raise RunStateError(
                f"Run {run.id} is already {run.status.value}; it cannot change state again"
            )

    def get_run(self, run_id: uuid.UUID) -> Optional[InferenceRun]:
        return self.repo.get(run_id)

    def get_recent_runs(
        self, run_type: Optional[RunType] = None, limit: int = 20
    ) -> List[InferenceRun]:
        return self.repo.get_recent(run_type=run_type, limit=limit)
