"""
Import batch repository.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import desc, func, or_
from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import ImportBatch, ImportBatchStatus
from chatlake.utils.dates import utc_now


class ImportBatchRepository(BaseRepository[ImportBatch]):
    """Repository for ImportBatch model."""

    def __init__(self, session: Session):
        super().__init__(ImportBatch, session)

    def get_recent(self, limit: int = 50, offset: int = 0) -> List[ImportBatch]:
        """Most recently created batches first."""
        return (
            self.session.query(ImportBatch)
            .order_by(desc(ImportBatch.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def get_by_status(
        self, status: ImportBatchStatus, limit: int = 100, offset: int = 0
    ) -> List[ImportBatch]:
        return (
            self.session.query(ImportBatch)
            .filter(ImportBatch.status == status)
            .order_by(desc(ImportBatch.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_by_status(self) -> Dict[str, int]:
        """
        Count batches grouped by status.

        Returns:
            Dictionary mapping status value to count
        """
        results = (
            self.session.query(ImportBatch.status, func.count(ImportBatch.id))
            .group_by(ImportBatch.status)
            .all()
        )
        return {
            (status.value if isinstance(status, ImportBatchStatus) else status): count
            for status, count in results
        }

    def find_cleanup_candidates(
        self, stale_threshold: timedelta, now: Optional[datetime] = None
    ) -> List[ImportBatch]:
        """
        Find batches a cleanup pass may remove.

        Candidates are failed batches, processing batches whose heartbeat is
        missing or older than the threshold, and staged batches created longer
        ago than the threshold. Committed batches are never returned.

        Args:
            stale_threshold: Age after which a batch counts as abandoned
            now: Reference time (defaults to the current UTC time)

        Returns:
            List of candidate batches, oldest first
        """
        now = now or utc_now()
        candidates = (
            self.session.query(ImportBatch)
            .filter(
                or_(
                    ImportBatch.status == ImportBatchStatus.FAILED,
                    ImportBatch.status == ImportBatchStatus.PROCESSING,
                    ImportBatch.status == ImportBatchStatus.STAGED,
                )
            )
            .order_by(ImportBatch.created_at)
            .all()
        )
        # Staleness is evaluated in Python so naive SQLite timestamps compare correctly
        return [
            b
            for b in candidates
            if b.status == ImportBatchStatus.FAILED or b.is_stale(stale_threshold, now)
        ]
