"""
Conversation similarity engine.

Builds one feature vector per conversation (TF-IDF over the message text, or
average-pooled segment embeddings) and stores the pairwise cosine similarity
of every pair above a floor, keeping at most K partners per conversation.

Rows of the pairwise matrix are computed on a thread pool; each worker hands
its pairs to a lock-protected collector. Stored pairs are order-normalized
(conversation_a_id < conversation_b_id), so an unordered pair appears at most
once per run.
"""

import logging
import threading
import time
import uuid
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer
from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import (
    ConversationRepository,
    ConversationSimilarityRepository,
    InferenceRunRepository,
    MessageRepository,
    SegmentRepository,
)
from chatlake.db.repositories.similarity import order_pair
from chatlake.exceptions import ConfigurationError, ImportCancelledError, NotFoundError
from chatlake.inference.embeddings import EmbeddingCache
from chatlake.inference.runs import RunTracker
from chatlake.inference.suggestions import conversation_title
from chatlake.models.db import Message, RunType, SimilarityMethod

logger = logging.getLogger(__name__)

# Lowercase alphabetic tokens of two or more letters
TOKEN_PATTERN = r"(?u)\b[^\W\d_]{2,}\b"


@dataclass
class SimilarityOptions:
    min_similarity: float = field(default_factory=lambda: settings.similarity_min_score)
    max_pairs_per_conversation: int = field(
        default_factory=lambda: settings.similarity_max_pairs_per_conversation
    )
    method: SimilarityMethod = SimilarityMethod.TFIDF_COSINE
    max_features: int = 500
    workers: int = field(default_factory=lambda: settings.similarity_workers)
    model_version: str = "1.0.0"

    def feature_config(self) -> dict:
        return {
            "method": self.method.value,
            "min_similarity": self.min_similarity,
            "max_pairs_per_conversation": self.max_pairs_per_conversation,
            "max_features": self.max_features,
            "model_version": self.model_version,
        }


@dataclass(frozen=True)
class SimilarityPair:
    conversation_a_id: uuid.UUID
    conversation_b_id: uuid.UUID
    similarity: float


@dataclass
class SimilarityResult:
    run_id: Optional[uuid.UUID]
    conversation_count: int
    pairs_stored: int
    elapsed_seconds: float = 0.0


@dataclass
class SimilarConversation:
    """A conversation related to a query, with its similarity score."""

    conversation_id: uuid.UUID
    title: str
    similarity: float
    message_count: int
    first_message_at: Optional[datetime]


class _PairCollector:
    """Thread-safe accumulator for pairs found by the row workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._pairs: List[SimilarityPair] = []

    def extend(self, pairs: List[SimilarityPair]) -> None:
        with self._lock:
            self._pairs.extend(pairs)

    @property
    def pairs(self) -> List[SimilarityPair]:
        with self._lock:
            return list(self._pairs)


def build_tfidf_matrix(texts: Sequence[str], max_features: int = 500):
    """
    Fit a TF-IDF vectorizer over texts.

    Returns:
        Tuple of (vectorizer, L2-normalized sparse matrix), or (None, None)
        when the texts hold no usable tokens
    """
    vectorizer = TfidfVectorizer(
        lowercase=True,
        token_pattern=TOKEN_PATTERN,
        max_features=max_features,
        norm="l2",
    )
    try:
        matrix = vectorizer.fit_transform(texts)
    except ValueError:
        # Empty vocabulary: no document has a letter token
        return None, None
    return vectorizer, matrix


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def select_top_pairs(pairs: List[SimilarityPair], max_per_conversation: int) -> List[SimilarityPair]:
    """
    Keep the strongest pairs so no conversation has more than K partners.

    Pairs are taken in descending similarity order (ties by id) and a pair is
    kept only while both of its conversations are still under the limit.
    """
    ordered = sorted(
        pairs,
        key=lambda p: (-p.similarity, p.conversation_a_id, p.conversation_b_id),
    )
    counts: Dict[uuid.UUID, int] = defaultdict(int)
    kept = []
    for pair in ordered:
        a, b = pair.conversation_a_id, pair.conversation_b_id
        if counts[a] >= max_per_conversation or counts[b] >= max_per_conversation:
            continue
        counts[a] += 1
        counts[b] += 1
        kept.append(pair)
    return kept


def compute_pairs(
    conversation_ids: Sequence[uuid.UUID],
    vectors: np.ndarray,
    min_similarity: float,
    max_per_conversation: int,
    workers: int = 4,
    cancel_event: Optional[threading.Event] = None,
) -> List[SimilarityPair]:
    """
    All order-normalized pairs with similarity >= min_similarity, top-K filtered.

    Args:
        conversation_ids: One id per row of vectors
        vectors: Dense matrix of L2-normalized rows
        min_similarity: Similarity floor
        max_per_conversation: K
        workers: Thread pool size
        cancel_event: Checked before each row

    Raises:
        ImportCancelledError: If cancel_event was set
    """
    n = len(conversation_ids)
    collector = _PairCollector()

    def score_row(i: int) -> None:
        if cancel_event is not None and cancel_event.is_set():
            return
        if i + 1 >= n:
            return
        scores = vectors[i + 1 :] @ vectors[i]
        found = []
        for offset in np.flatnonzero(scores >= min_similarity):
            j = i + 1 + int(offset)
            a, b = order_pair(conversation_ids[i], conversation_ids[j])
            found.append(SimilarityPair(a, b, round(float(min(scores[offset], 1.0)), 6)))
        collector.extend(found)

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        list(pool.map(score_row, range(n)))

    if cancel_event is not None and cancel_event.is_set():
        raise ImportCancelledError("Similarity computation cancelled")

    return select_top_pairs(collector.pairs, max_per_conversation)


class SimilarityEngine:
    """
    Computes, stores and looks up conversation similarity.

    Args:
        session: Database session
        options: Similarity options
        embedding_cache: Required for the segment_embedding method
        run_tracker: Run lifecycle owner
    """

    def __init__(
        self,
        session: Session,
        options: Optional[SimilarityOptions] = None,
        embedding_cache: Optional[EmbeddingCache] = None,
        run_tracker: Optional[RunTracker] = None,
    ):
        self.session = session
        self.options = options or SimilarityOptions()
        self.embedding_cache = embedding_cache
        self.runs = run_tracker or RunTracker(session)
        self.repo = ConversationSimilarityRepository(session)
        self.run_repo = InferenceRunRepository(session)
        self.conversations = ConversationRepository(session)
        self.messages = MessageRepository(session)
        self.segments = SegmentRepository(session)

    def calculate(self, cancel_event: Optional[threading.Event] = None) -> SimilarityResult:
        """
        Compute and store similarity edges for all conversations in one run.

        Raises:
            ConfigurationError: For the segment_embedding method without an
                embedding cache or without any embeddings
            ImportCancelledError: If cancel_event is set (the run is marked failed)
        """
        start_time = time.time()
        method = self.options.method
        if method == SimilarityMethod.SEGMENT_EMBEDDING and self.embedding_cache is None:
            raise ConfigurationError("segment_embedding similarity needs an embedding cache")

        model_name = (
            f"embedding:{self.embedding_cache.model_name}"
            if method == SimilarityMethod.SEGMENT_EMBEDDING
            else "tfidf-cosine"
        )

        with self.runs.track(
            RunType.SIMILARITY,
            model_name=model_name,
            model_version=self.options.model_version,
            input_scope="all_conversations",
            feature_config=self.options.feature_config(),
        ) as run:
            if method == SimilarityMethod.SEGMENT_EMBEDDING:
                ids, vectors = self._embedding_features()
            else:
                ids, vectors = self._tfidf_features()

            pairs: List[SimilarityPair] = []
            if len(ids) >= 2:
                logger.info(f"Computing similarity for {len(ids)} conversations ({method.value})")
                pairs = compute_pairs(
                    ids,
                    vectors,
                    self.options.min_similarity,
                    self.options.max_pairs_per_conversation,
                    workers=self.options.workers,
                    cancel_event=cancel_event,
                )
            else:
                logger.info("Fewer than two conversations with features; no pairs to compute")

            for pair in pairs:
                self.repo.create(
                    inference_run_id=run.id,
                    conversation_a_id=pair.conversation_a_id,
                    conversation_b_id=pair.conversation_b_id,
                    similarity=pair.similarity,
                    method=method,
                )
            self.session.commit()

            self.runs.complete(
                run,
                {
                    "conversation_count": len(ids),
                    "pairs_stored": len(pairs),
                    "method": method.value,
                },
            )

        return SimilarityResult(
            run_id=run.id,
            conversation_count=len(ids),
            pairs_stored=len(pairs),
            elapsed_seconds=time.time() - start_time,
        )

    def _conversation_texts(self) -> Dict[uuid.UUID, str]:
        """Every conversation's message contents joined with spaces, in id order."""
        grouped: Dict[uuid.UUID, List[str]] = defaultdict(list)
        rows = (
            self.session.query(Message.conversation_id, Message.content)
            .order_by(Message.conversation_id, Message.sequence_index)
            .all()
        )
        for conversation_id, content in rows:
            grouped[conversation_id].append(content)
        return {cid: " ".join(grouped[cid]) for cid in sorted(grouped)}

    def _tfidf_features(self) -> tuple[List[uuid.UUID], np.ndarray]:
        texts = self._conversation_texts()
        ids = list(texts)
        if len(ids) < 2:
            return ids, np.zeros((len(ids), 0))
        _, matrix = build_tfidf_matrix(list(texts.values()), self.options.max_features)
        if matrix is None:
            return [], np.zeros((0, 0))
        return ids, matrix.toarray()

    def _embedding_features(self) -> tuple[List[uuid.UUID], np.ndarray]:
        embeddings = self.embedding_cache.get_all_embeddings()
        if not embeddings:
            raise ConfigurationError("No segment embeddings found; run embedding generation first")

        owners = {
            s.id: s.conversation_id
            for s in self.segments.get_by_ids([segment_id for segment_id, _ in embeddings])
        }
        grouped: Dict[uuid.UUID, List[np.ndarray]] = defaultdict(list)
        for segment_id, vector in embeddings:
            if segment_id in owners:
                grouped[owners[segment_id]].append(vector)

        ids = sorted(grouped)
        pooled = np.vstack([np.mean(grouped[cid], axis=0) for cid in ids])
        return ids, normalize_rows(pooled.astype(np.float64))

    def _similar_conversation(self, conversation_id: uuid.UUID, score: float) -> Optional[SimilarConversation]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        return SimilarConversation(
            conversation_id=conversation.id,
            title=conversation_title(self.messages, conversation.id, conversation.title),
            similarity=round(score, 4),
            message_count=self.messages.count_by_conversation(conversation.id),
            first_message_at=conversation.first_message_at,
        )

    def _live_scores(self, query_text: str, exclude: Optional[uuid.UUID] = None) -> List[tuple[uuid.UUID, float]]:
        """TF-IDF cosine of query_text against every stored conversation, best first."""
        texts = self._conversation_texts()
        if exclude is not None:
            texts.pop(exclude, None)
        if not texts or not query_text.strip():
            return []

        _, matrix = build_tfidf_matrix(
            list(texts.values()) + [query_text], self.options.max_features
        )
        if matrix is None:
            return []
        scores = (matrix[:-1] @ matrix[-1].T).toarray().ravel()
        ranked = sorted(zip(texts, scores), key=lambda item: (-item[1], item[0]))
        return [(cid, float(score)) for cid, score in ranked if score > 0]

    def find_similar(self, conversation_id: uuid.UUID, limit: int = 10) -> List[SimilarConversation]:
        """
        Conversations most similar to one conversation.

        Uses the edges of the latest completed similarity run; falls back to a
        live TF-IDF comparison when that run has no edges for it.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        if self.conversations.get(conversation_id) is None:
            raise NotFoundError("Conversation", conversation_id)

        run = self.run_repo.get_latest_completed(RunType.SIMILARITY)
        if run is not None:
            edges = self.repo.get_for_conversation(run.id, conversation_id, limit)
            if edges:
                results = []
                for edge in edges:
                    other = (
                        edge.conversation_b_id
                        if edge.conversation_a_id == conversation_id
                        else edge.conversation_a_id
                    )
                    item = self._similar_conversation(other, edge.similarity)
                    if item is not None:
                        results.append(item)
                return results

        text = " ".join(m.content for m in self.messages.get_by_conversation(conversation_id))
        scores = self._live_scores(text, exclude=conversation_id)
        return [
            item
            for item in (self._similar_conversation(cid, s) for cid, s in scores[:limit])
            if item is not None
        ]

    def search_similar(self, text: str, limit: int = 10) -> List[SimilarConversation]:
        """Conversations most similar to free text (live TF-IDF)."""
        return [
            item
            for item in (self._similar_conversation(cid, s) for cid, s in self._live_scores(text)[:limit])
            if item is not None
        ]

    def get_similarity(self, a: uuid.UUID, b: uuid.UUID) -> Optional[float]:
        """
        Similarity of two conversations.

        The stored value of the latest completed run wins; otherwise the pair is
        scored live. Returns None when either conversation has no text.
        """
        if a == b:
            return 1.0
        run = self.run_repo.get_latest_completed(RunType.SIMILARITY)
        if run is not None:
            edge = self.repo.get_pair(run.id, a, b)
            if edge is not None:
                return edge.similarity

        texts = self._conversation_texts()
        if a not in texts or b not in texts:
            return None
        _, matrix = build_tfidf_matrix(list(texts.values()), self.options.max_features)
        if matrix is None:
            return 0.0
        index = {cid: i for i, cid in enumerate(texts)}
        score = (matrix[index[a]] @ matrix[index[b]].T).toarray()[0, 0]
        return round(float(score), 6)
