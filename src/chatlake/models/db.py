"""
SQLAlchemy database models for ChatLake.

Three tiers live here:
- Bronze: import batches and the raw artifacts they uploaded (immutable)
- Silver: canonical conversations and messages, deduplicated by content identity
- Gold: derived records (segments, embeddings, suggestions, similarity edges,
  topics, drift metrics), each owned by the InferenceRun that produced it
"""

import enum
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from chatlake.utils.dates import ensure_utc, utc_now


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


def _enum_column(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        values_callable=lambda x: [e.value for e in x],
        length=32,
    )


class ImportBatchStatus(str, enum.Enum):
    """Lifecycle of an import batch: staged -> processing -> committed | failed."""

    STAGED = "staged"
    PROCESSING = "processing"
    COMMITTED = "committed"
    FAILED = "failed"


class InferenceRunStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunType(str, enum.Enum):
    """Kinds of derived computation tracked by InferenceRun."""

    SEGMENTATION = "segmentation"
    EMBEDDING = "embedding"
    CLUSTERING = "clustering"
    SIMILARITY = "similarity"
    TOPICS = "topics"
    DRIFT = "drift"


class SuggestionStatus(str, enum.Enum):
    """Suggestion review state. Transitions are one-way out of PENDING."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MERGED = "merged"


class ProjectStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class AssignedBy(str, enum.Enum):
    SYSTEM = "system"
    USER = "user"


class SimilarityMethod(str, enum.Enum):
    TFIDF_COSINE = "tfidf_cosine"
    SEGMENT_EMBEDDING = "segment_embedding"


# ===== Bronze =====


class ImportBatch(Base):
    """One import execution (a set of uploaded export files)."""

    __tablename__ = "import_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    source_system: Mapped[str] = mapped_column(String(100), nullable=False)
    source_version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    imported_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    import_label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ImportBatchStatus] = mapped_column(
        _enum_column(ImportBatchStatus),
        nullable=False,
        default=ImportBatchStatus.STAGED,
        index=True,
    )
    artifact_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_conversation_count: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    processed_conversation_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_heartbeat_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    artifacts: Mapped[list["RawArtifact"]] = relationship(
        back_populates="import_batch", order_by="RawArtifact.created_at"
    )

    @property
    def is_complete(self) -> bool:
        return self.status in (ImportBatchStatus.COMMITTED, ImportBatchStatus.FAILED)

    @property
    def elapsed(self) -> Optional[timedelta]:
        """Time spent processing so far (or in total once complete)."""
        if self.started_at is None:
            return None
        end = ensure_utc(self.completed_at) if self.completed_at else utc_now()
        return end - ensure_utc(self.started_at)

    @property
    def progress_percentage(self) -> Optional[float]:
        """Processed/total conversations as 0-100, None while the total is unknown."""
        if not self.total_conversation_count:
            return 100.0 if self.status == ImportBatchStatus.COMMITTED else None
        pct = 100.0 * self.processed_conversation_count / self.total_conversation_count
        return round(min(pct, 100.0), 1)

    def is_stale(self, threshold: timedelta, now: Optional[datetime] = None) -> bool:
        """
        True when this batch has been left behind.

        Processing batches are stale when the heartbeat (or start time, if no
        heartbeat was ever written) is older than the threshold. Staged batches
        are stale when they were created longer ago than the threshold.
        """
        now = now or utc_now()
        if self.status == ImportBatchStatus.PROCESSING:
            last_seen = self.last_heartbeat_at or self.started_at
            return last_seen is None or now - ensure_utc(last_seen) > threshold
        if self.status == ImportBatchStatus.STAGED:
            return now - ensure_utc(self.created_at) > threshold
        return False

    def __repr__(self) -> str:
        return f"<ImportBatch(id={self.id}, status={self.status}, source={self.source_system!r})>"


class RawArtifact(Base):
    """One uploaded export file. Immutable after creation."""

    __tablename__ = "raw_artifacts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    import_batch_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("import_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    artifact_type: Mapped[str] = mapped_column(String(50), nullable=False)
    artifact_name: Mapped[str] = mapped_column(String(500), nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    byte_length: Mapped[int] = mapped_column(Integer, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    raw_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    stored_path: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    import_batch: Mapped["ImportBatch"] = relationship(back_populates="artifacts")

    def __repr__(self) -> str:
        return f"<RawArtifact(id={self.id}, name={self.artifact_name!r}, bytes={self.byte_length})>"


# ===== Silver =====


class Conversation(Base):
    """
    Canonical conversation thread.

    Identity is conversation_key, a hash over the ordered (role, content)
    pairs of its messages. Source ids are kept only as a hint.
    """

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_key: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True
    )
    source_system: Mapped[str] = mapped_column(String(100), nullable=False)
    external_conversation_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    first_message_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    last_message_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_from_import_batch_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("import_batches.id"),
        nullable=False,
        index=True,
    )
    last_seen_import_batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("import_batches.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation", order_by="Message.sequence_index"
    )
    segments: Mapped[list["ConversationSegment"]] = relationship(
        back_populates="conversation", order_by="ConversationSegment.segment_index"
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, key={self.conversation_key[:12]}...)>"


class Message(Base):
    """
    One conversational turn. Never updated once inserted.

    (conversation_id, role, sequence_index, content_hash) is the idempotency
    boundary: a second ingestion of the same message is absorbed.
    """

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    message_timestamp: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    raw_artifact_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("raw_artifacts.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "conversation_id",
            "role",
            "sequence_index",
            "content_hash",
            name="uq_message_identity",
        ),
    )

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, role={self.role!r}, seq={self.sequence_index})>"


class ConversationArtifactMap(Base):
    """Provenance edge: which raw artifacts contributed a conversation."""

    __tablename__ = "conversation_artifact_map"

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    raw_artifact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("raw_artifacts.id", ondelete="CASCADE"),
        primary_key=True,
    )
    mapped_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<ConversationArtifactMap(conversation={self.conversation_id}, artifact={self.raw_artifact_id})>"


class ParsingFailure(Base):
    """A parse or ingest failure isolated to one artifact (or one entry in it)."""

    __tablename__ = "parsing_failures"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    raw_artifact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("raw_artifacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    failure_stage: Mapped[str] = mapped_column(String(50), nullable=False)
    failure_message: Mapped[str] = mapped_column(Text, nullable=False)
    external_conversation_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<ParsingFailure(artifact={self.raw_artifact_id}, stage={self.failure_stage!r})>"


# ===== Gold =====


class InferenceRun(Base):
    """
    One versioned execution of a derived computation.

    Every derived row references the run that produced it, and
    feature_config_hash captures the full configuration used.
    """

    __tablename__ = "inference_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    run_type: Mapped[RunType] = mapped_column(
        _enum_column(RunType), nullable=False, index=True
    )
    model_name: Mapped[str] = mapped_column(String(255), nullable=False)
    model_version: Mapped[str] = mapped_column(String(50), nullable=False)
    input_scope: Mapped[str] = mapped_column(String(100), nullable=False)
    input_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feature_config_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[InferenceRunStatus] = mapped_column(
        _enum_column(InferenceRunStatus),
        nullable=False,
        default=InferenceRunStatus.RUNNING,
        index=True,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    metrics: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    def __repr__(self) -> str:
        return f"<InferenceRun(id={self.id}, type={self.run_type}, status={self.status})>"


class ConversationSegment(Base):
    """A topic-coherent contiguous slice of a conversation's messages."""

    __tablename__ = "conversation_segments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inference_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inference_runs.id"), nullable=False
    )
    segment_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start_message_index: Mapped[int] = mapped_column(Integer, nullable=False)
    end_message_index: Mapped[int] = mapped_column(Integer, nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False)
    content_text: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "conversation_id", "segment_index", name="uq_conversation_segment_index"
        ),
    )

    conversation: Mapped["Conversation"] = relationship(back_populates="segments")

    def __repr__(self) -> str:
        return (
            f"<ConversationSegment(id={self.id}, index={self.segment_index}, "
            f"messages={self.start_message_index}-{self.end_message_index})>"
        )


class SegmentEmbedding(Base):
    """Cached embedding vector for a segment under one embedding model."""

    __tablename__ = "segment_embeddings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    segment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversation_segments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inference_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inference_runs.id"), nullable=False
    )
    embedding_model: Mapped[str] = mapped_column(String(255), nullable=False)
    dimensions: Mapped[int] = mapped_column(Integer, nullable=False)
    embedding_vector: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    source_content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("segment_id", "embedding_model", name="uq_segment_embedding_model"),
    )

    def __repr__(self) -> str:
        return f"<SegmentEmbedding(segment={self.segment_id}, model={self.embedding_model!r})>"


class Project(Base):
    """A user- or system-created grouping of conversations."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_key: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, unique=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ProjectStatus] = mapped_column(
        _enum_column(ProjectStatus), nullable=False, default=ProjectStatus.ACTIVE
    )
    is_system_generated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )

    conversations: Mapped[list["ProjectConversation"]] = relationship(
        back_populates="project"
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name={self.name!r})>"


class ProjectConversation(Base):
    """
    Assignment of a conversation to a project.

    History is kept: a reassignment flips is_current on the prior row
    rather than deleting it.
    """

    __tablename__ = "project_conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assigned_by: Mapped[AssignedBy] = mapped_column(
        _enum_column(AssignedBy), nullable=False, default=AssignedBy.USER
    )
    inference_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inference_runs.id"), nullable=True
    )
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_project_conversation_current", "project_id", "conversation_id", "is_current"),
    )

    project: Mapped["Project"] = relationship(back_populates="conversations")

    def __repr__(self) -> str:
        return (
            f"<ProjectConversation(project={self.project_id}, "
            f"conversation={self.conversation_id}, current={self.is_current})>"
        )


class ProjectSuggestion(Base):
    """A proposed project derived from one cluster, awaiting review."""

    __tablename__ = "project_suggestions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    inference_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inference_runs.id"), nullable=False, index=True
    )
    suggested_project_key: Mapped[str] = mapped_column(String(100), nullable=False)
    suggested_name: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[SuggestionStatus] = mapped_column(
        _enum_column(SuggestionStatus),
        nullable=False,
        default=SuggestionStatus.PENDING,
        index=True,
    )
    # Stored as lists of UUID strings
    conversation_ids: Mapped[list] = mapped_column(JSONB, nullable=False)
    segment_ids: Mapped[list] = mapped_column(JSONB, nullable=False)
    unique_conversation_count: Mapped[int] = mapped_column(Integer, nullable=False)
    segment_count: Mapped[int] = mapped_column(Integer, nullable=False)
    resolved_project_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("projects.id"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_suggestion_confidence"),
    )

    @property
    def conversation_uuids(self) -> list[uuid.UUID]:
        return [uuid.UUID(str(c)) for c in self.conversation_ids or []]

    @property
    def segment_uuids(self) -> list[uuid.UUID]:
        return [uuid.UUID(str(s)) for s in self.segment_ids or []]

    def __repr__(self) -> str:
        return (
            f"<ProjectSuggestion(id={self.id}, name={self.suggested_name!r}, "
            f"status={self.status}, confidence={self.confidence})>"
        )


class ConversationSimilarity(Base):
    """Similarity edge between two conversations. A is always the lower id."""

    __tablename__ = "conversation_similarities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    inference_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inference_runs.id"), nullable=False, index=True
    )
    conversation_a_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    conversation_b_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    similarity: Mapped[float] = mapped_column(Float, nullable=False)
    method: Mapped[SimilarityMethod] = mapped_column(
        _enum_column(SimilarityMethod), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "inference_run_id",
            "conversation_a_id",
            "conversation_b_id",
            name="uq_similarity_run_pair",
        ),
        CheckConstraint(
            "conversation_a_id < conversation_b_id", name="ck_similarity_pair_order"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ConversationSimilarity(a={self.conversation_a_id}, "
            f"b={self.conversation_b_id}, score={self.similarity})>"
        )


class Topic(Base):
    """A topic extracted by a topics run."""

    __tablename__ = "topics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    inference_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inference_runs.id"), nullable=False, index=True
    )
    topic_index: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    keywords: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<Topic(id={self.id}, label={self.label!r})>"


class ConversationTopic(Base):
    """Relevance score of a topic for a conversation."""

    __tablename__ = "conversation_topics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    inference_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inference_runs.id"), nullable=False, index=True
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    topic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("topics.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[float] = mapped_column(Float, nullable=False)

    topic: Mapped["Topic"] = relationship()

    def __repr__(self) -> str:
        return f"<ConversationTopic(conversation={self.conversation_id}, topic={self.topic_id}, score={self.score})>"


class ProjectDriftMetric(Base):
    """Topic drift of a project between one time window and the previous one."""

    __tablename__ = "project_drift_metrics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    inference_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inference_runs.id"), nullable=False, index=True
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    drift_score: Mapped[float] = mapped_column(Float, nullable=False)
    details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("drift_score >= 0 AND drift_score <= 1", name="ck_drift_score_range"),
    )

    def __repr__(self) -> str:
        return f"<ProjectDriftMetric(project={self.project_id}, end={self.window_end}, drift={self.drift_score})>"
