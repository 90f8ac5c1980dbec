"""
Raw artifact repository.
"""

import uuid
from typing import List

from sqlalchemy.orm import Session

from chatlake.db.repositories.base import BaseRepository
from chatlake.models.db import RawArtifact


class RawArtifactRepository(BaseRepository[RawArtifact]):
    """Repository for RawArtifact model."""

    def __init__(self, session: Session):
        super().__init__(RawArtifact, session)

    def get_by_batch(self, batch_id: uuid.UUID) -> List[RawArtifact]:
        return (
            self.session.query(RawArtifact)
            .filter(RawArtifact.import_batch_id == batch_id)
            .order_by(RawArtifact.created_at, RawArtifact.artifact_name)
            .all()
        )

    def get_by_sha256(self, sha256: str) -> List[RawArtifact]:
        """All artifacts with the given content hash (the same bytes may be uploaded many times)."""
        return self.session.query(RawArtifact).filter(RawArtifact.sha256 == sha256).all()

    def delete_by_batch(self, batch_id: uuid.UUID) -> int:
        return (
            self.session.query(RawArtifact)
            .filter(RawArtifact.import_batch_id == batch_id)
            .delete(synchronize_session=False)
        )
