"""
Cleanup of failed and abandoned import batches.

Committed batches are never removed. A batch may be cleaned up when it
failed, when it is processing but its heartbeat is older than the stale
threshold (or it never wrote one), or when it has sat staged longer than the
threshold.

Cleanup removes the batch, its artifacts (rows and files), their parsing
failures and provenance edges, and the conversations the batch created
together with everything derived from them. A conversation that another
batch's artifacts also contributed is kept and handed over to that batch.
Pending project suggestions lose the removed conversations and segments,
and one left with no conversations is deleted.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import (
    ConversationRepository,
    ConversationSimilarityRepository,
    ImportBatchRepository,
    MessageRepository,
    ParsingFailureRepository,
    ProjectConversationRepository,
    ProjectSuggestionRepository,
    RawArtifactRepository,
    SegmentEmbeddingRepository,
    SegmentRepository,
)
from chatlake.exceptions import BatchStateError, NotFoundError
from chatlake.models.db import (
    Conversation,
    ConversationArtifactMap,
    ConversationSegment,
    ConversationTopic,
    ImportBatch,
    ImportBatchStatus,
    Message,
    RawArtifact,
)
from chatlake.storage.raw_store import RawStore
from chatlake.utils.dates import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    batches_deleted: int = 0
    artifacts_deleted: int = 0
    conversations_deleted: int = 0
    messages_deleted: int = 0
    segments_deleted: int = 0
    failures_deleted: int = 0
    files_deleted: int = 0
    suggestions_pruned: int = 0
    message: str = ""

    def merge(self, other: "CleanupResult") -> None:
        self.batches_deleted += other.batches_deleted
        self.artifacts_deleted += other.artifacts_deleted
        self.conversations_deleted += other.conversations_deleted
        self.messages_deleted += other.messages_deleted
        self.segments_deleted += other.segments_deleted
        self.failures_deleted += other.failures_deleted
        self.files_deleted += other.files_deleted
        self.suggestions_pruned += other.suggestions_pruned


class ImportCleanupService:
    """
    Removes failed and stale import batches.

    Args:
        session: Database session
        raw_store: Artifact storage holding the batch files
        stale_threshold: Age after which a batch counts as abandoned
    """

    def __init__(
        self,
        session: Session,
        raw_store: Optional[RawStore] = None,
        stale_threshold: Optional[timedelta] = None,
    ):
        self.session = session
        self.raw_store = raw_store or RawStore()
        self.stale_threshold = stale_threshold or timedelta(
            minutes=settings.import_stale_threshold_minutes
        )
        self.batches = ImportBatchRepository(session)
        self.artifacts = RawArtifactRepository(session)
        self.failures = ParsingFailureRepository(session)
        self.conversations = ConversationRepository(session)
        self.messages = MessageRepository(session)
        self.segments = SegmentRepository(session)
        self.embeddings = SegmentEmbeddingRepository(session)
        self.similarities = ConversationSimilarityRepository(session)
        self.assignments = ProjectConversationRepository(session)
        self.suggestions = ProjectSuggestionRepository(session)

    def can_cleanup(
        self, batch: ImportBatch, now: Optional[datetime] = None
    ) -> Tuple[bool, str]:
        """
        Decide whether a batch may be removed.

        Returns:
            Tuple of (allowed, reason)
        """
        now = now or utc_now()
        if batch.status == ImportBatchStatus.COMMITTED:
            return False, "Committed batches cannot be cleaned up"
        if batch.status == ImportBatchStatus.FAILED:
            return True, "Batch failed"
        if batch.status == ImportBatchStatus.PROCESSING:
            if batch.is_stale(self.stale_threshold, now):
                return True, "Batch is processing but its heartbeat is stale"
            last_seen = ensure_utc(batch.last_heartbeat_at or batch.started_at)
            minutes = int((now - last_seen).total_seconds() // 60)
            return False, (
                f"Batch is still processing (last heartbeat {minutes} min ago); "
                "wait for completion or for stale detection"
            )
        if batch.is_stale(self.stale_threshold, now):
            return True, "Batch has been staged longer than the stale threshold"
        return False, "Batch was staged recently"

    def find_cleanup_candidates(self) -> List[ImportBatch]:
        return self.batches.find_cleanup_candidates(self.stale_threshold)

    def cleanup_batch(self, batch_id: uuid.UUID) -> CleanupResult:
        """
        Remove one batch and everything it brought in.

        Raises:
            NotFoundError: If the batch does not exist
            BatchStateError: If the batch may not be cleaned up
        """
        batch = self.batches.get(batch_id)
        if batch is None:
            raise NotFoundError("ImportBatch", batch_id)
        allowed, reason = self.can_cleanup(batch)
        if not allowed:
            raise BatchStateError(reason)
        result = self._delete_batch(batch)
        self.session.commit()
        return result

    def cleanup_all_failed(self) -> CleanupResult:
        """Remove every batch find_cleanup_candidates() returns."""
        total = CleanupResult()
        for batch in self.find_cleanup_candidates():
            total.merge(self._delete_batch(batch))
            self.session.commit()
        total.message = f"Cleaned up {total.batches_deleted} batch(es)"
        logger.info(total.message)
        return total

    def _delete_batch(self, batch: ImportBatch) -> CleanupResult:
        batch_id = batch.id
        artifact_ids = [a.id for a in self.artifacts.get_by_batch(batch_id)]
        result = CleanupResult()

        # Conversations also contributed by other batches survive under that batch
        removable: List[uuid.UUID] = []
        for conversation_id in self.conversations.get_ids_created_by_batch(batch_id):
            other_batch = self._other_contributing_batch(conversation_id, batch_id)
            if other_batch is None:
                removable.append(conversation_id)
            else:
                conversation = self.conversations.get(conversation_id)
                conversation.created_from_import_batch_id = other_batch
                if conversation.last_seen_import_batch_id == batch_id:
                    conversation.last_seen_import_batch_id = other_batch

        # Conversations created elsewhere but last seen here point back to their creator
        for conversation in (
            self.session.query(Conversation)
            .filter(
                Conversation.last_seen_import_batch_id == batch_id,
                Conversation.created_from_import_batch_id != batch_id,
            )
            .all()
        ):
            conversation.last_seen_import_batch_id = conversation.created_from_import_batch_id
        self.session.flush()

        if removable:
            segment_ids = [
                row[0]
                for row in self.session.query(ConversationSegment.id)
                .filter(ConversationSegment.conversation_id.in_(removable))
                .all()
            ]
            self.embeddings.delete_by_segments(segment_ids)
            result.segments_deleted = self.segments.delete_by_conversations(removable)
            self.similarities.delete_by_conversations(removable)
            self.assignments.delete_by_conversations(removable)
            result.suggestions_pruned = self.suggestions.prune_pending(removable, segment_ids)
            self.session.query(ConversationTopic).filter(
                ConversationTopic.conversation_id.in_(removable)
            ).delete(synchronize_session=False)
            result.messages_deleted = self.messages.delete_by_conversations(removable)
            self.session.query(ConversationArtifactMap).filter(
                ConversationArtifactMap.conversation_id.in_(removable)
            ).delete(synchronize_session=False)
            result.conversations_deleted = (
                self.session.query(Conversation)
                .filter(Conversation.id.in_(removable))
                .delete(synchronize_session=False)
            )

        if artifact_ids:
            # Surviving messages keep their content but lose the artifact pointer
            self.session.query(Message).filter(Message.raw_artifact_id.in_(artifact_ids)).update(
                {Message.raw_artifact_id: None}, synchronize_session=False
            )
            self.session.query(ConversationArtifactMap).filter(
                ConversationArtifactMap.raw_artifact_id.in_(artifact_ids)
            ).delete(synchronize_session=False)

        result.failures_deleted = self.failures.delete_by_batch(batch_id)
        result.artifacts_deleted = self.artifacts.delete_by_batch(batch_id)
        self.session.query(ImportBatch).filter(ImportBatch.id == batch_id).delete(
            synchronize_session=False
        )
        self.session.flush()

        result.files_deleted = self.raw_store.delete_batch_files(batch_id)
        result.batches_deleted = 1
        result.message = (
            f"Deleted batch {batch_id}: {result.artifacts_deleted} artifact(s), "
            f"{result.conversations_deleted} conversation(s), {result.files_deleted} file(s)"
        )
        logger.info(result.message)
        return result

    def _other_contributing_batch(
        self, conversation_id: uuid.UUID, batch_id: uuid.UUID
    ) -> Optional[uuid.UUID]:
        row = (
            self.session.query(RawArtifact.import_batch_id)
            .join(ConversationArtifactMap, ConversationArtifactMap.raw_artifact_id == RawArtifact.id)
            .filter(
                ConversationArtifactMap.conversation_id == conversation_id,
                RawArtifact.import_batch_id != batch_id,
            )
            .order_by(RawArtifact.created_at)
            .first()
        )
        return row[0] if row else None
