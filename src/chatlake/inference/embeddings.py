"""
Embedding cache for conversation segments.

Maps (segment, embedding model) to a vector. An entry is valid exactly when
its source_content_hash equals the segment's current content_hash; there are
no expiry timers. Stale entries are deleted and regenerated, never updated in
place.

The cache is an explicit handle: build one per session and pass it to the
components that need vectors.
"""

import logging
import re
import threading
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import SegmentEmbeddingRepository, SegmentRepository
from chatlake.exceptions import AllUnitsFailedError, ImportCancelledError
from chatlake.inference.runs import RunTracker
from chatlake.models.db import ConversationSegment, InferenceRun, RunType
from chatlake.providers.base import ModelProvider, truncate_for_embedding

logger = logging.getLogger(__name__)

_VECTOR_DTYPE = np.dtype("<f4")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def serialize_vector(vector) -> bytes:
    return np.asarray(vector, dtype=_VECTOR_DTYPE).tobytes()


def deserialize_vector(data: bytes) -> np.ndarray:
    return np.frombuffer(data, dtype=_VECTOR_DTYPE).copy()


def extract_substantive_content(text: str) -> str:
    """
    De-emphasize conversational openers before embedding.

    With several paragraphs, a short first paragraph (under 150 chars) is
    dropped. A single paragraph drops a short first sentence (under 80 chars).
    """
    if not text or not text.strip():
        return text

    paragraphs = [p for p in re.split(r"\r?\n\r?\n", text) if p.strip()]
    if len(paragraphs) > 1:
        if len(paragraphs[0].strip()) < 150:
            return "\n\n".join(paragraphs[1:])
        return text

    sentences = [s.strip() for s in _SENTENCE_END.split(text.strip()) if s.strip()]
    if len(sentences) > 1 and len(sentences[0]) < 80:
        return " ".join(sentences[1:])
    return text


@dataclass
class EmbeddingGenerationResult:
    run_id: Optional[uuid.UUID]
    segments_processed: int
    embeddings_generated: int
    embeddings_failed: int
    already_cached: int
    elapsed_seconds: float = 0.0


class EmbeddingCache:
    """
    Hash-validated cache of segment embeddings.

    Args:
        session: Database session
        provider: Embedding provider
        model_name: Cache key model name (defaults to the provider's embedding model)
        dimensions: Expected vector size; mismatches are logged
        max_chars: Provider input bound passed to truncate_for_embedding
        checkpoint_interval: Units between commits in generate_missing
    """

    def __init__(
        self,
        session: Session,
        provider: ModelProvider,
        model_name: Optional[str] = None,
        dimensions: Optional[int] = None,
        max_chars: Optional[int] = None,
        checkpoint_interval: Optional[int] = None,
        run_tracker: Optional[RunTracker] = None,
    ):
        self.session = session
        self.provider = provider
        self.model_name = model_name or provider.embedding_model_name
        self.dimensions = dimensions or settings.embedding_dimensions
        self.max_chars = max_chars or settings.embedding_max_chars
        self.checkpoint_interval = max(
            1, checkpoint_interval or settings.embedding_checkpoint_interval
        )
        self.runs = run_tracker or RunTracker(session)
        self.segments = SegmentRepository(session)
        self.repo = SegmentEmbeddingRepository(session)

    def get_or_generate(
        self, segment_id: uuid.UUID, run: Optional[InferenceRun] = None
    ) -> Optional[np.ndarray]:
        """
        Return the segment's vector, generating it when missing or stale.

        Args:
            segment_id: Segment to embed
            run: Run to attribute a new entry to (defaults to the segment's own run)

        Returns:
            The vector, or None if the segment is missing or the provider failed
        """
        segment = self.segments.get(segment_id)
        if segment is None:
            return None

        cached = self.repo.get_for_segment(segment_id, self.model_name)
        if cached is not None and cached.source_content_hash == segment.content_hash:
            return deserialize_vector(cached.embedding_vector)

        vector = self._generate(segment, run.id if run else segment.inference_run_id)
        if vector is not None:
            self.session.commit()
        return vector

    def _generate(
        self, segment: ConversationSegment, run_id: uuid.UUID
    ) -> Optional[np.ndarray]:
        """Embed one segment and replace its cache entry inside a savepoint."""
        text = truncate_for_embedding(
            extract_substantive_content(segment.content_text), self.max_chars
        )
        raw = self.provider.embed(text)
        if raw is None:
            logger.warning(f"No embedding for segment {segment.id}; skipping")
            return None

        vector = np.asarray(raw, dtype=_VECTOR_DTYPE)
        if vector.shape[0] != self.dimensions:
            logger.warning(
                f"Segment {segment.id}: expected {self.dimensions} dimensions, "
                f"got {vector.shape[0]}"
            )

        with self.session.begin_nested():
            existing = self.repo.get_for_segment(segment.id, self.model_name)
            if existing is not None:
                self.session.delete(existing)
                self.session.flush()
            self.repo.insert_if_absent(
                segment.id,
                self.model_name,
                inference_run_id=run_id,
                dimensions=int(vector.shape[0]),
                embedding_vector=serialize_vector(vector),
                source_content_hash=segment.content_hash,
            )
        return vector

    def generate_missing(
        self, cancel_event: Optional[threading.Event] = None
    ) -> EmbeddingGenerationResult:
        """
        Embed every segment lacking a valid entry, in one embedding run.

        Progress is committed every checkpoint_interval units. Provider
        failures are counted and skipped; the run fails only when every unit
        failed.

        Raises:
            ImportCancelledError: If cancel_event is set; completed
                checkpoints are kept
        """
        start_time = time.time()
        pending = self.repo.get_segments_without_valid_embedding(self.model_name)
        already_cached = len(self.repo.get_valid(self.model_name))

        if not pending:
            logger.info("All segments have valid embeddings")
            return EmbeddingGenerationResult(None, 0, 0, 0, already_cached)

        logger.info(f"Generating embeddings for {len(pending)} segments")
        generated = failed = 0

        with self.runs.track(
            RunType.EMBEDDING,
            model_name=self.model_name,
            model_version="1.0.0",
            input_scope="segments",
            feature_config={
                "embedding_model": self.model_name,
                "dimensions": self.dimensions,
                "max_chars": self.max_chars,
                "content_filter": "substantive",
            },
            input_description=f"Generating embeddings for {len(pending)} segments",
        ) as run:
            for index, segment in enumerate(pending, start=1):
                if cancel_event is not None and cancel_event.is_set():
                    self.session.commit()
                    raise ImportCancelledError(
                        f"Embedding generation cancelled after {generated} embedding(s)"
                    )

                if self._generate(segment, run.id) is None:
                    failed += 1
                else:
                    generated += 1

                if index % self.checkpoint_interval == 0:
                    self.session.commit()
                    logger.info(f"Embedding progress: {index}/{len(pending)} ({generated} generated)")

            self.session.commit()
            if generated == 0:
                raise AllUnitsFailedError(f"Embedding failed for all {failed} segments")

            self.runs.complete(
                run,
                {
                    "segments_processed": len(pending),
                    "embeddings_generated": generated,
                    "embeddings_failed": failed,
                },
            )

        logger.info(f"Generated {generated} embeddings in {time.time() - start_time:.1f}s")
        return EmbeddingGenerationResult(
            run_id=run.id,
            segments_processed=len(pending),
            embeddings_generated=generated,
            embeddings_failed=failed,
            already_cached=already_cached,
            elapsed_seconds=time.time() - start_time,
        )

    def invalidate_stale(self) -> int:
        """Delete entries whose source hash no longer matches their segment. Returns count."""
        stale = self.repo.get_stale(self.model_name)
        for entry in stale:
            self.session.delete(entry)
        self.session.commit()
        if stale:
            logger.info(f"Invalidated {len(stale)} stale embeddings")
        return len(stale)

    def get_all_embeddings(self) -> List[tuple[uuid.UUID, np.ndarray]]:
        """Valid (segment_id, vector) pairs for the model, in segment id order."""
        return [
            (entry.segment_id, deserialize_vector(entry.embedding_vector))
            for entry in self.repo.get_valid(self.model_name)
        ]
