"""
Inference run repository.
"""

from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import InferenceRun, InferenceRunStatus, RunType


class InferenceRunRepository(BaseRepository[InferenceRun]):
    """Repository for InferenceRun model."""

    def __init__(self, session: Session):
        super().__init__(InferenceRun, session)

    def get_recent(
        self, run_type: Optional[RunType] = None, limit: int = 20
    ) -> List[InferenceRun]:
        """
        Get recent runs, newest first.

        Args:
            run_type: Optional run type filter
            limit: Maximum number of runs

        Returns:
            List of runs
        """
        query = self.session.query(InferenceRun)
        if run_type is not None:
            query = query.filter(InferenceRun.run_type == run_type)
        return query.order_by(desc(InferenceRun.started_at)).limit(limit).all()

    def get_latest_completed(self, run_type: RunType) -> Optional[InferenceRun]:
        return (
            self.session.query(InferenceRun)
            .filter(
                InferenceRun.run_type == run_type,
                InferenceRun.status == InferenceRunStatus.COMPLETED,
            )
            .order_by(desc(InferenceRun.completed_at), desc(InferenceRun.started_at))
            .first()
        )
