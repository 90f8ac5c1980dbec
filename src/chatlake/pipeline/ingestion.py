"""
Ingestion pipeline for turning parsed export conversations into canonical rows.

A conversation's identity is its conversation key (a hash over the ordered
role/content pairs), not the id the source system gave it. Ingesting the
same content twice, from the same artifact or another one, adds provenance
only: the conversation and its messages are never duplicated.

Each conversation is written inside its own savepoint, and the session is
committed every ingest_commit_interval conversations so a crash loses at most
one checkpoint of work.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import (
    ConversationArtifactMapRepository,
    ConversationRepository,
    MessageRepository,
)
from chatlake.exceptions import ArtifactUnreadableError, UnknownArtifactTypeError
from chatlake.models.db import ImportBatch, RawArtifact
from chatlake.models.parsed import ParsedConversation
from chatlake.parsers.base import ParserError
from chatlake.parsers.registry import ParserRegistry, get_default_registry
from chatlake.parsers.types import ParseIssue, ParseIssueSeverity
from chatlake.pipeline.failure_tracking import (
    STAGE_INGEST,
    STAGE_PARSE,
    STAGE_READ,
    track_parse_failure,
)
from chatlake.storage.raw_store import RawStore
from chatlake.utils.dates import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ConversationIngestOutcome:
    """What ingesting one parsed conversation changed."""

    conversation_id: uuid.UUID
    is_new: bool
    messages_inserted: int
    messages_existing: int


@dataclass
class ArtifactIngestResult:
    """Counters for one artifact."""

    artifact_id: uuid.UUID
    conversations_seen: int = 0
    conversations_created: int = 0
    conversations_existing: int = 0
    conversations_failed: int = 0
    messages_inserted: int = 0
    messages_existing: int = 0
    parse_issues: int = 0
    parse_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.parse_error is None

    def add(self, outcome: ConversationIngestOutcome) -> None:
        if outcome.is_new:
            self.conversations_created += 1
        else:
            self.conversations_existing += 1
        self.messages_inserted += outcome.messages_inserted
        self.messages_existing += outcome.messages_existing


ProgressCallback = Callable[[ArtifactIngestResult], None]


class IngestionEngine:
    """
    Streams artifacts through their parser into the canonical store.

    Args:
        session: Database session
        raw_store: Where artifact bytes are read from
        registry: Parser registry (defaults to the built-in parsers)
        commit_interval: Conversations per checkpoint commit
    """

    def __init__(
        self,
        session: Session,
        raw_store: Optional[RawStore] = None,
        registry: Optional[ParserRegistry] = None,
        commit_interval: Optional[int] = None,
    ):
        self.session = session
        self.raw_store = raw_store or RawStore()
        self.registry = registry or get_default_registry()
        self.commit_interval = max(1, commit_interval or settings.ingest_commit_interval)
        self.conversations = ConversationRepository(session)
        self.messages = MessageRepository(session)
        self.artifact_maps = ConversationArtifactMapRepository(session)

    def ingest_artifact(
        self,
        batch: ImportBatch,
        artifact: RawArtifact,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ArtifactIngestResult:
        """
        Ingest every conversation of one artifact.

        Per-entry parse issues and per-conversation ingest errors become
        ParsingFailure rows and are skipped. A failure of the artifact as a
        whole (unknown type, broken JSON) is recorded and reported in the
        result; conversations yielded before the break stay ingested.

        Raises:
            ArtifactUnreadableError: If the artifact's bytes cannot be read (recorded as a read failure)
            ImportCancelledError: If cancel_event is set
        """
        result = ArtifactIngestResult(artifact_id=artifact.id)
        uncheckpointed = 0

        try:
            parser = self.registry.get(artifact.artifact_type)
        except UnknownArtifactTypeError as e:
            result.parse_error = str(e)
            track_parse_failure(self.session, artifact.id, STAGE_PARSE, str(e))
            self.session.commit()
            return result

        def on_issue(issue: ParseIssue) -> None:
            result.parse_issues += 1
            # Fatal issues are recorded once, when the ParserError surfaces
            if issue.severity == ParseIssueSeverity.WARNING:
                track_parse_failure(
                    self.session, artifact.id, STAGE_PARSE, issue.message, issue.external_id
                )

        logger.info(f"Ingesting artifact {artifact.artifact_name!r} ({artifact.artifact_type})")
        try:
            stream = self.raw_store.open(artifact)
        except ArtifactUnreadableError as e:
            logger.error(f"Artifact {artifact.artifact_name!r} could not be read: {e}")
            track_parse_failure(self.session, artifact.id, STAGE_READ, str(e))
            self.session.commit()
            raise

        with stream:
            try:
                for parsed in parser.iter_conversations(
                    stream, on_issue=on_issue, cancel_event=cancel_event
                ):
                    result.conversations_seen += 1
                    uncheckpointed += 1
                    try:
                        with self.session.begin_nested():
                            outcome = self.ingest_conversation(batch, artifact, parsed)
                    except Exception as e:
                        logger.warning(
                            f"Failed to ingest conversation {parsed.external_id} "
                            f"from {artifact.artifact_name!r}: {e}"
                        )
                        track_parse_failure(
                            self.session, artifact.id, STAGE_INGEST, str(e), parsed.external_id
                        )
                        result.conversations_failed += 1
                    else:
                        result.add(outcome)

                    if uncheckpointed >= self.commit_interval:
                        self._checkpoint(batch, uncheckpointed, result, on_progress)
                        uncheckpointed = 0
            except ParserError as e:
                logger.error(f"Artifact {artifact.artifact_name!r} could not be parsed: {e}")
                result.parse_error = str(e)
                track_parse_failure(self.session, artifact.id, STAGE_PARSE, str(e))

        self._checkpoint(batch, uncheckpointed, result, on_progress)
        logger.info(
            f"Artifact {artifact.artifact_name!r}: {result.conversations_created} new, "
            f"{result.conversations_existing} existing, {result.conversations_failed} failed, "
            f"{result.messages_inserted} messages inserted"
        )
        return result

    def _checkpoint(
        self,
        batch: ImportBatch,
        processed: int,
        result: ArtifactIngestResult,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        batch.processed_conversation_count = (batch.processed_conversation_count or 0) + processed
        batch.last_heartbeat_at = utc_now()
        self.session.commit()
        if on_progress is not None:
            on_progress(result)

    def ingest_conversation(
        self,
        batch: ImportBatch,
        artifact: RawArtifact,
        parsed: ParsedConversation,
    ) -> ConversationIngestOutcome:
        """
        Insert one parsed conversation, absorbing anything already stored.

        Args:
            batch: Batch being imported
            artifact: Artifact the conversation came from
            parsed: The parsed conversation

        Returns:
            ConversationIngestOutcome with insert/existing counts
        """
        conversation, inserted = self.conversations.insert_if_absent(
            parsed.conversation_key,
            source_system=parsed.source_system,
            external_conversation_id=parsed.external_id,
            title=parsed.title,
            first_message_at=parsed.first_message_at,
            last_message_at=parsed.last_message_at,
            created_from_import_batch_id=batch.id,
            last_seen_import_batch_id=batch.id,
        )
        if not inserted:
            conversation.last_seen_import_batch_id = batch.id

        self.artifact_maps.insert_if_absent(conversation.id, artifact.id)

        messages_inserted = messages_existing = 0
        for message in parsed.messages:
            _, message_inserted = self.messages.insert_if_absent(
                conversation.id,
                message.role,
                message.sequence_index,
                message.content_hash,
                content=message.content,
                message_timestamp=message.timestamp,
                raw_artifact_id=artifact.id,
            )
            if message_inserted:
                messages_inserted += 1
            else:
                messages_existing += 1

        self.session.flush()
        return ConversationIngestOutcome(
            conversation_id=conversation.id,
            is_new=inserted,
            messages_inserted=messages_inserted,
            messages_existing=messages_existing,
        )
