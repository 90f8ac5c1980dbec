"""
Segmentation engine.

Splits a conversation into topic-coherent segments. Overlapping windows of
consecutive messages are embedded, and a boundary is placed where the cosine
similarity between neighbouring windows drops below a threshold. Segment size
is bounded on both sides: every segment has between min_segment_size and
max_segment_size messages.

Segmentation is computed once per conversation. Re-running skips
conversations that already have segments; reset_all_segments() clears them
so a run with different options can start over.
"""

import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import (
    ConversationRepository,
    MessageRepository,
    SegmentEmbeddingRepository,
    SegmentRepository,
)
from chatlake.exceptions import AllUnitsFailedError, ImportCancelledError, NotFoundError
from chatlake.inference.runs import RunTracker
from chatlake.models.db import ConversationSegment, InferenceRun, Message, RunType
from chatlake.providers.base import ModelProvider
from chatlake.utils.hashing import calculate_content_hash

logger = logging.getLogger(__name__)

_PROFILE_MARKERS = ('"user_editable_context"', '"user_profile"', '"user_instructions"')


@dataclass
class SegmentationOptions:
    """Tunable parameters of the boundary detector."""

    window_size: int = field(default_factory=lambda: settings.segmentation_window_size)
    similarity_threshold: float = field(
        default_factory=lambda: settings.segmentation_similarity_threshold
    )
    min_segment_size: int = field(
        default_factory=lambda: settings.segmentation_min_segment_size
    )
    max_segment_size: int = field(
        default_factory=lambda: settings.segmentation_max_segment_size
    )
    min_conversation_messages: int = field(
        default_factory=lambda: settings.segmentation_min_conversation_messages
    )
    min_content_length: int = field(
        default_factory=lambda: settings.segmentation_min_content_length
    )
    max_window_chars: int = 24000
    model_version: str = "1.0.0"

    def __post_init__(self) -> None:
        if self.window_size < 1:
            raise ValueError("window_size must be at least 1")
        if self.min_segment_size < 1:
            raise ValueError("min_segment_size must be at least 1")
        # Splitting an oversized segment must leave two halves of at least min size
        if self.max_segment_size < 2 * self.min_segment_size:
            raise ValueError("max_segment_size must be at least twice min_segment_size")


@dataclass
class SegmentationResult:
    run_id: Optional[uuid.UUID]
    conversations_processed: int
    conversations_skipped: int
    segments_created: int
    conversations_failed: int = 0
    elapsed_seconds: float = 0.0


@dataclass
class SegmentPreview:
    """Lightweight view of a stored segment."""

    segment_id: uuid.UUID
    conversation_id: uuid.UUID
    segment_index: int
    start_message_index: int
    end_message_index: int
    message_count: int
    preview: str


def is_profile_context(content: Optional[str]) -> bool:
    """True for ChatGPT custom-instruction/profile blobs stored as JSON messages."""
    if not content:
        return False
    trimmed = content.lstrip()
    if not trimmed.startswith("{"):
        return False
    return '"content_type"' in trimmed and any(m in trimmed for m in _PROFILE_MARKERS)


def substantive_messages(messages: Sequence[Message]) -> List[Message]:
    """Drop system turns and profile-context messages before windowing."""
    return [
        m for m in messages if m.role != "system" and not is_profile_context(m.content)
    ]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape:
        return 0.0
    denominator = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(a, b) / denominator)


def detect_boundaries(
    window_vectors: Sequence[Optional[np.ndarray]],
    message_count: int,
    options: SegmentationOptions,
) -> List[int]:
    """
    Pick segment start indices from consecutive window embeddings.

    Window i covers messages [i, i + window_size). A boundary at i starts a
    new segment at message i. Boundaries always begin with 0, and a boundary
    is only placed when both the segment it closes and the remainder of the
    conversation keep at least min_segment_size messages.

    Args:
        window_vectors: One embedding per window (None where embedding failed)
        message_count: Number of substantive messages
        options: Segmentation options

    Returns:
        Sorted list of boundary indices starting with 0
    """
    min_size = options.min_segment_size
    max_size = options.max_segment_size
    boundaries = [0]
    if message_count <= min_size:
        return boundaries

    last = 0
    for i in range(1, len(window_vectors)):
        since_last = i - last
        if message_count - i < min_size:
            break
        prev, curr = window_vectors[i - 1], window_vectors[i]
        topic_shift = (
            prev is not None
            and curr is not None
            and cosine_similarity(prev, curr) < options.similarity_threshold
        )
        if (topic_shift and since_last >= min_size) or since_last >= max_size:
            boundaries.append(i)
            last = i

    return _split_oversized(boundaries, message_count, min_size, max_size)


def _split_oversized(
    boundaries: List[int], message_count: int, min_size: int, max_size: int
) -> List[int]:
    """Force-split segments longer than max_size, keeping every piece at least min_size."""
    result: List[int] = []
    ends = boundaries[1:] + [message_count]
    for start, end in zip(boundaries, ends):
        result.append(start)
        while end - start > max_size:
            cut = start + max_size
            if end - cut < min_size:
                cut = end - min_size
            result.append(cut)
            start = cut
    return result


class SegmentationEngine:
    """
    Creates ConversationSegments for conversations that have none yet.

    Window embeddings go straight to the provider; they are transient and
    never cached.
    """

    def __init__(
        self,
        session: Session,
        provider: ModelProvider,
        options: Optional[SegmentationOptions] = None,
        run_tracker: Optional[RunTracker] = None,
    ):
        self.session = session
        self.provider = provider
        self.options = options or SegmentationOptions()
        self.runs = run_tracker or RunTracker(session)
        self.conversations = ConversationRepository(session)
        self.messages = MessageRepository(session)
        self.segments = SegmentRepository(session)
        self.embeddings = SegmentEmbeddingRepository(session)

    def feature_config(self) -> dict:
        return {
            "algorithm": "sliding_window_cosine",
            "embedding_model": self.provider.embedding_model_name,
            **asdict(self.options),
        }

    def segment_all(
        self,
        conversation_ids: Optional[List[uuid.UUID]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SegmentationResult:
        """
        Segment every conversation that has no segments yet.

        Args:
            conversation_ids: Restrict to these conversations (default: all)
            cancel_event: Checked between conversations

        Returns:
            SegmentationResult (run_id is None when there was nothing to do)

        Raises:
            ImportCancelledError: If cancel_event is set (the run is marked failed)
        """
        start_time = time.time()
        pending = self.conversations.get_unsegmented_ids()
        if conversation_ids is not None:
            wanted = set(conversation_ids)
            pending = [c for c in pending if c in wanted]

        if not pending:
            logger.info("No new conversations to segment")
            return SegmentationResult(None, 0, 0, 0)

        logger.info(f"Segmenting {len(pending)} conversations")
        processed = skipped = failed = total_segments = 0

        with self.runs.track(
            RunType.SEGMENTATION,
            model_name=self.provider.embedding_model_name,
            model_version=self.options.model_version,
            input_scope="unsegmented_conversations",
            feature_config=self.feature_config(),
            input_description=f"Segmenting {len(pending)} conversations",
        ) as run:
            for index, conversation_id in enumerate(pending, start=1):
                if cancel_event is not None and cancel_event.is_set():
                    raise ImportCancelledError(
                        f"Segmentation cancelled after {processed} conversation(s)"
                    )
                try:
                    with self.session.begin_nested():
                        created = self.segment_conversation(conversation_id, run)
                    self.session.commit()
                except Exception as e:
                    logger.warning(f"Segmentation failed for conversation {conversation_id}: {e}")
                    failed += 1
                    continue

                processed += 1
                if created:
                    total_segments += len(created)
                else:
                    skipped += 1

                if index % 50 == 0 or index == len(pending):
                    logger.info(
                        f"Segmentation progress: {index}/{len(pending)} "
                        f"({total_segments} segments created)"
                    )

            if failed and processed == 0:
                raise AllUnitsFailedError(f"Segmentation failed for all {failed} conversations")

            self.runs.complete(
                run,
                {
                    "conversations_processed": processed,
                    "conversations_skipped": skipped,
                    "conversations_failed": failed,
                    "segments_created": total_segments,
                },
            )

        return SegmentationResult(
            run_id=run.id,
            conversations_processed=processed,
            conversations_skipped=skipped,
            segments_created=total_segments,
            conversations_failed=failed,
            elapsed_seconds=time.time() - start_time,
        )

    def segment_conversation(
        self, conversation_id: uuid.UUID, run: InferenceRun
    ) -> List[ConversationSegment]:
        """
        Segment one conversation under an existing run.

        Conversations that already have segments are left as they are and
        return an empty list, as do conversations too short to segment.
        """
        if self.conversations.get(conversation_id) is None:
            raise NotFoundError("Conversation", conversation_id)
        if self.segments.has_segments(conversation_id):
            return []

        messages = substantive_messages(self.messages.get_by_conversation(conversation_id))
        if len(messages) < self.options.min_conversation_messages:
            logger.debug(f"Conversation {conversation_id}: too few messages to segment")
            return []
        if sum(len(m.content) for m in messages) < self.options.min_content_length:
            logger.debug(f"Conversation {conversation_id}: too little content to segment")
            return []

        boundaries = detect_boundaries(
            self._embed_windows([m.content for m in messages]),
            len(messages),
            self.options,
        )

        created: List[ConversationSegment] = []
        ends = [b - 1 for b in boundaries[1:]] + [len(messages) - 1]
        for segment_index, (start, end) in enumerate(zip(boundaries, ends)):
            members = messages[start : end + 1]
            content = "\n\n".join(m.content for m in members)
            created.append(
                self.segments.create(
                    conversation_id=conversation_id,
                    inference_run_id=run.id,
                    segment_index=segment_index,
                    start_message_index=members[0].sequence_index,
                    end_message_index=members[-1].sequence_index,
                    message_count=len(members),
                    content_text=content,
                    content_hash=calculate_content_hash(content),
                )
            )
        return created

    def _embed_windows(self, contents: List[str]) -> List[Optional[np.ndarray]]:
        window = min(self.options.window_size, len(contents))
        vectors: List[Optional[np.ndarray]] = []
        for i in range(max(1, len(contents) - window + 1)):
            text = "\n".join(contents[i : i + window])[: self.options.max_window_chars]
            vector = self.provider.embed(text)
            vectors.append(None if vector is None else np.asarray(vector, dtype=np.float32))
        return vectors

    def reset_all_segments(self) -> int:
        """Delete every segment embedding and segment. Returns segments deleted."""
        embeddings_deleted = self.embeddings.delete_all()
        segments_deleted = self.segments.delete_all()
        self.session.commit()
        logger.info(
            f"Deleted {embeddings_deleted} segment embeddings and {segments_deleted} segments"
        )
        return segments_deleted

    def get_segments(self, conversation_id: uuid.UUID) -> List[SegmentPreview]:
        return [
            SegmentPreview(
                segment_id=s.id,
                conversation_id=s.conversation_id,
                segment_index=s.segment_index,
                start_message_index=s.start_message_index,
                end_message_index=s.end_message_index,
                message_count=s.message_count,
                preview=(
                    s.content_text[:100] + "..." if len(s.content_text) > 100 else s.content_text
                ),
            )
            for s in self.segments.get_by_conversation(conversation_id)
        ]
