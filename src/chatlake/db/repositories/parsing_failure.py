"""
Parsing failure repository.
"""

import uuid
from typing import List

from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import ParsingFailure, RawArtifact


class ParsingFailureRepository(BaseRepository[ParsingFailure]):
    """Repository for ParsingFailure model."""

    def __init__(self, session: Session):
        super().__init__(ParsingFailure, session)

    def get_by_artifact(self, raw_artifact_id: uuid.UUID) -> List[ParsingFailure]:
        return (
            self.session.query(ParsingFailure)
            .filter(ParsingFailure.raw_artifact_id == raw_artifact_id)
            .order_by(ParsingFailure.occurred_at)
            .all()
        )

    def get_by_batch(self, batch_id: uuid.UUID) -> List[ParsingFailure]:
        return (
            self.session.query(ParsingFailure)
            .join(RawArtifact, RawArtifact.id == ParsingFailure.raw_artifact_id)
            .filter(RawArtifact.import_batch_id == batch_id)
            .order_by(ParsingFailure.occurred_at)
            .all()
        )

    def delete_by_batch(self, batch_id: uuid.UUID) -> int:
        artifact_ids = self.session.query(RawArtifact.id).filter(
            RawArtifact.import_batch_id == batch_id
        )
        return (
            self.session.query(ParsingFailure)
            .filter(ParsingFailure.raw_artifact_id.in_(artifact_ids))
            .delete(synchronize_session=False)
        )
