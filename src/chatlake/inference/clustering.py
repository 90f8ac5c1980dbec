"""
Clustering orchestrator.

Five phases, each safe to re-run:

1. Segment conversations that have no segments yet
2. Embed segments that lack a valid cached vector
3. Load every (segment, vector) pair, sorted by segment id
4. Project with UMAP (fixed random_state) and cluster with HDBSCAN.
   HDBSCAN leaves low-density points as noise (label -1); noise is never
   assigned to a cluster.
5. Persist one ProjectSuggestion per cluster

Each invocation is one clustering InferenceRun whose feature_config_hash
covers the projection and clustering parameters and the seed. Identical
vectors plus identical configuration give identical assignments and
confidences.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from sklearn.cluster import HDBSCAN
from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import ProjectSuggestionRepository, SegmentRepository
from chatlake.exceptions import (
    AllUnitsFailedError,
    ConfigurationError,
    ImportCancelledError,
)
from chatlake.inference.embeddings import EmbeddingCache
from chatlake.inference.naming import ClusterNamer, clean_preview, slugify
from chatlake.inference.runs import RunTracker
from chatlake.inference.segmentation import SegmentationEngine
from chatlake.inference.suggestions import SuggestionService
from chatlake.models.db import (
    ConversationSegment,
    InferenceRun,
    ProjectSuggestion,
    RunType,
    SuggestionStatus,
)

logger = logging.getLogger(__name__)

ALGORITHM = "UMAP+HDBSCAN"
MODEL_NAME = "chatlake.segments.umap-hdbscan"
NOISE_LABEL = -1


@dataclass
class ClusteringOptions:
    umap_dimensions: int = field(default_factory=lambda: settings.clustering_umap_dimensions)
    umap_neighbors: int = field(default_factory=lambda: settings.clustering_umap_neighbors)
    min_cluster_size: int = field(default_factory=lambda: settings.clustering_min_cluster_size)
    min_points: int = field(default_factory=lambda: settings.clustering_min_points)
    random_seed: int = field(default_factory=lambda: settings.clustering_random_seed)
    auto_accept_threshold: Optional[float] = field(
        default_factory=lambda: settings.clustering_auto_accept_threshold
    )
    model_version: str = "1.0.0"
    name_sample_size: int = 12

    def feature_config(self) -> dict:
        return {
            "algorithm": ALGORITHM,
            "model_version": self.model_version,
            "umap_dimensions": self.umap_dimensions,
            "umap_neighbors": self.umap_neighbors,
            "min_cluster_size": self.min_cluster_size,
            "min_points": self.min_points,
            "random_seed": self.random_seed,
        }


@dataclass
class ClusterAssignment:
    """Output of the numeric phase: one label and membership strength per point."""

    labels: np.ndarray
    probabilities: np.ndarray
    projection: str


@dataclass
class ClusteringResult:
    run_id: uuid.UUID
    segment_count: int
    conversation_count: int
    cluster_count: int
    suggestion_ids: List[uuid.UUID]
    noise_segment_ids: List[uuid.UUID]
    assignments: Dict[uuid.UUID, int]
    elapsed_seconds: float = 0.0

    @property
    def noise_count(self) -> int:
        return len(self.noise_segment_ids)


@dataclass
class ClusterSummary:
    suggestion_id: uuid.UUID
    suggested_name: str
    suggested_project_key: str
    conversation_count: int
    segment_count: int
    confidence: float
    status: SuggestionStatus
    sample_segment_ids: List[uuid.UUID]


def _l2_normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


def cluster_vectors(vectors: np.ndarray, options: ClusteringOptions) -> ClusterAssignment:
    """
    Reduce and cluster a matrix of embeddings.

    UMAP runs only when there are more points than the neighbourhood size
    and the target dimension; smaller inputs are clustered directly on the
    L2-normalized vectors. Fewer points than min_cluster_size are all noise.

    Args:
        vectors: (n, d) embedding matrix, rows in a stable order
        options: Clustering options

    Returns:
        ClusterAssignment with labels (-1 = noise) and probabilities
    """
    if vectors.ndim != 2:
        raise ValueError(f"Embeddings must be 2D, got ndim={vectors.ndim}")

    n = vectors.shape[0]
    if n < max(2, options.min_cluster_size):
        return ClusterAssignment(
            labels=np.full(n, NOISE_LABEL, dtype=int),
            probabilities=np.zeros(n),
            projection="none",
        )

    features = _l2_normalize(vectors.astype(np.float64))
    projection = "none"
    if n > max(options.umap_neighbors, options.umap_dimensions + 1):
        import umap

        reducer = umap.UMAP(
            n_components=options.umap_dimensions,
            n_neighbors=options.umap_neighbors,
            metric="cosine",
            random_state=options.random_seed,
        )
        features = reducer.fit_transform(features)
        projection = "umap"

    model = HDBSCAN(
        min_cluster_size=max(2, options.min_cluster_size),
        min_samples=max(1, min(options.min_points, n)),
    )
    labels = model.fit_predict(features).astype(int)
    return ClusterAssignment(
        labels=labels,
        probabilities=np.asarray(model.probabilities_, dtype=float),
        projection=projection,
    )


def _evenly_spaced(items: list, count: int) -> list:
    """Deterministic sample of up to count items spread across the list."""
    if len(items) <= count:
        return list(items)
    step = len(items) / count
    return [items[int(i * step)] for i in range(count)]


class ClusteringOrchestrator:
    """
    Turns segment embeddings into reviewable project suggestions.

    Callers must not run two orchestrations concurrently against the same
    unembedded data.
    """

    def __init__(
        self,
        session: Session,
        embedding_cache: EmbeddingCache,
        segmentation: Optional[SegmentationEngine] = None,
        namer: Optional[ClusterNamer] = None,
        options: Optional[ClusteringOptions] = None,
        run_tracker: Optional[RunTracker] = None,
    ):
        self.session = session
        self.cache = embedding_cache
        self.segmentation = segmentation
        self.namer = namer or ClusterNamer(embedding_cache.provider)
        self.options = options or ClusteringOptions()
        self.runs = run_tracker or RunTracker(session)
        self.segments = SegmentRepository(session)
        self.suggestions = ProjectSuggestionRepository(session)

    def run(self, cancel_event: Optional[threading.Event] = None) -> ClusteringResult:
        """
        Run all five phases.

        Raises:
            ConfigurationError: If there are no segment embeddings (the run is marked failed)
            ImportCancelledError: If cancel_event is set
        """
        start_time = time.time()

        if self.segmentation is not None:
            logger.info("Phase 1: segmenting new conversations")
            try:
                self.segmentation.segment_all(cancel_event=cancel_event)
            except AllUnitsFailedError as e:
                logger.warning(f"Segmentation phase made no progress: {e}")

        logger.info("Phase 2: generating missing embeddings")
        try:
            self.cache.generate_missing(cancel_event=cancel_event)
        except AllUnitsFailedError as e:
            logger.warning(f"Embedding phase made no progress: {e}")

        logger.info("Phase 3: loading segment embeddings")
        pairs = sorted(self.cache.get_all_embeddings(), key=lambda p: p[0])

        with self.runs.track(
            RunType.CLUSTERING,
            model_name=MODEL_NAME,
            model_version=self.options.model_version,
            input_scope="all_segments",
            feature_config=self.options.feature_config(),
            input_description=(
                f"{ALGORITHM} clustering {len(pairs)} segments "
                f"(umap={self.options.umap_dimensions}D, "
                f"min_cluster_size={self.options.min_cluster_size})"
            ),
        ) as run:
            if not pairs:
                raise ConfigurationError(
                    "No segment embeddings found; run segmentation and embedding first"
                )

            segment_ids = [segment_id for segment_id, _ in pairs]
            logger.info(f"Phase 4: clustering {len(pairs)} segment embeddings")
            assignment = cluster_vectors(np.vstack([v for _, v in pairs]), self.options)

            logger.info("Phase 5: creating project suggestions")
            suggestions = self._create_suggestions(run, segment_ids, assignment, cancel_event)

            assignments = {
                segment_id: int(label)
                for segment_id, label in zip(segment_ids, assignment.labels)
            }
            noise_ids = [s for s, label in assignments.items() if label == NOISE_LABEL]
            conversation_count = len(
                {s.conversation_id for s in self.segments.get_by_ids(segment_ids)}
            )
            self.runs.complete(
                run, self._metrics(suggestions, len(pairs), conversation_count, noise_ids, assignment)
            )

        result = ClusteringResult(
            run_id=run.id,
            segment_count=len(pairs),
            conversation_count=conversation_count,
            cluster_count=len(suggestions),
            suggestion_ids=[s.id for s in suggestions],
            noise_segment_ids=noise_ids,
            assignments=assignments,
            elapsed_seconds=time.time() - start_time,
        )
        logger.info(
            f"Clustering complete: {result.cluster_count} suggestions, "
            f"{result.noise_count} noise segments in {result.elapsed_seconds:.1f}s"
        )
        return result

    def _create_suggestions(
        self,
        run: InferenceRun,
        segment_ids: List[uuid.UUID],
        assignment: ClusterAssignment,
        cancel_event: Optional[threading.Event],
    ) -> List[ProjectSuggestion]:
        segments_by_id: Dict[uuid.UUID, ConversationSegment] = {
            s.id: s for s in self.segments.get_by_ids(segment_ids)
        }

        clusters: Dict[int, List[int]] = {}
        for index, label in enumerate(assignment.labels):
            if label != NOISE_LABEL:
                clusters.setdefault(int(label), []).append(index)

        short_run = run.id.hex[:8]
        used_keys: set[str] = set()
        created: List[ProjectSuggestion] = []
        auto_accept: List[ProjectSuggestion] = []

        for label, indices in sorted(clusters.items(), key=lambda kv: (-len(kv[1]), kv[0])):
            if cancel_event is not None and cancel_event.is_set():
                raise ImportCancelledError("Clustering cancelled while creating suggestions")

            members = [segments_by_id[segment_ids[i]] for i in indices]
            conversation_ids = sorted({m.conversation_id for m in members})

            samples = [
                m.content_text[:1000]
                for m in _evenly_spaced(members, self.options.name_sample_size)
            ]
            name = self.namer.name(samples, label, len(members))

            key = f"{slugify(name)}-{short_run}"
            base_key, suffix = key, 2
            while key in used_keys:
                key = f"{base_key}-{suffix}"
                suffix += 1
            used_keys.add(key)

            confidence = round(float(np.mean(assignment.probabilities[indices])), 4)
            confidence = min(1.0, max(0.0, confidence))

            previews = [p for p in (clean_preview(m.content_text) for m in members[:3]) if p]
            summary = f"{len(members)} segments from {len(conversation_ids)} conversations"
            if previews:
                summary += f". Samples: {'; '.join(previews)}"

            suggestion = self.suggestions.create(
                inference_run_id=run.id,
                suggested_project_key=key,
                suggested_name=name,
                summary=summary,
                confidence=confidence,
                status=SuggestionStatus.PENDING,
                conversation_ids=[str(c) for c in conversation_ids],
                segment_ids=[str(m.id) for m in members],
                unique_conversation_count=len(conversation_ids),
                segment_count=len(members),
            )
            created.append(suggestion)
            logger.info(
                f"Cluster {label}: '{name}' ({len(members)} segments, "
                f"{len(conversation_ids)} conversations, confidence {confidence:.2f})"
            )

            threshold = self.options.auto_accept_threshold
            if threshold is not None and confidence >= threshold:
                auto_accept.append(suggestion)

        review = SuggestionService(self.session)
        for suggestion in auto_accept:
            review.accept(suggestion.id)
        self.session.commit()
        return created

    @staticmethod
    def _metrics(
        suggestions: List[ProjectSuggestion],
        segment_count: int,
        conversation_count: int,
        noise_ids: List[uuid.UUID],
        assignment: ClusterAssignment,
    ) -> dict:
        sizes = [s.segment_count for s in suggestions]
        confidences = [s.confidence for s in suggestions]
        return {
            "algorithm": ALGORITHM,
            "projection": assignment.projection,
            "segment_count": segment_count,
            "unique_conversation_count": conversation_count,
            "cluster_count": len(suggestions),
            "noise_count": len(noise_ids),
            "noise_percentage": round(100.0 * len(noise_ids) / segment_count, 1),
            "suggestions_created": len(suggestions),
            "auto_accepted": sum(
                1 for s in suggestions if s.status == SuggestionStatus.ACCEPTED
            ),
            "avg_cluster_size": round(float(np.mean(sizes)), 2) if sizes else 0,
            "avg_confidence": round(float(np.mean(confidences)), 4) if confidences else 0,
        }

    def get_cluster_summaries(self, run_id: uuid.UUID) -> List[ClusterSummary]:
        """Suggestions of a clustering run, highest confidence first."""
        suggestions = sorted(
            self.suggestions.get_by_run(run_id), key=lambda s: (-s.confidence, s.suggested_name)
        )
        return [
            ClusterSummary(
                suggestion_id=s.id,
                suggested_name=s.suggested_name,
                suggested_project_key=s.suggested_project_key,
                conversation_count=s.unique_conversation_count,
                segment_count=s.segment_count,
                confidence=s.confidence,
                status=s.status,
                sample_segment_ids=s.segment_uuids[:5],
            )
            for s in suggestions
        ]
