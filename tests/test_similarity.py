"""
Tests for conversation similarity.
"""

import uuid

import numpy as np
import pytest

from chatlake.exceptions import ConfigurationError, NotFoundError
from chatlake.inference.embeddings import EmbeddingCache
from chatlake.inference.similarity import (
    SimilarityEngine,
    SimilarityOptions,
    SimilarityPair,
    build_tfidf_matrix,
    compute_pairs,
    select_top_pairs,
)
from chatlake.models.db import (
    ConversationSimilarity,
    InferenceRun,
    InferenceRunStatus,
    RunType,
    SimilarityMethod,
)


def _options(**overrides) -> SimilarityOptions:
    values = dict(
        min_similarity=0.1,
        max_pairs_per_conversation=20,
        method=SimilarityMethod.TFIDF_COSINE,
        workers=2,
    )
    values.update(overrides)
    return SimilarityOptions(**values)


@pytest.fixture
def corpus(conversation_factory):
    """Three gardening conversations and two about backups."""
    return {
        "garden1": conversation_factory(
            [("user", "How deep should I plant tomato seedlings in garden soil?")], title="garden1"
        ),
        "garden2": conversation_factory(
            [("user", "Tomato seedlings need compost and rich garden soil")], title="garden2"
        ),
        "garden3": conversation_factory(
            [("user", "Watering schedule for tomato plants in the garden")], title="garden3"
        ),
        "backup1": conversation_factory(
            [("user", "Configure rsync backup snapshots with retention")], title="backup1"
        ),
        "backup2": conversation_factory(
            [("user", "Encrypted rsync backup snapshots to external disk")], title="backup2"
        ),
    }


class TestSelectTopPairs:
    """Tests for the per-conversation partner limit."""

    def test_both_ends_must_be_under_limit(self):
        a, b, c = sorted(uuid.uuid4() for _ in range(3))
        pairs = [SimilarityPair(a, b, 0.9), SimilarityPair(a, c, 0.8), SimilarityPair(b, c, 0.7)]

        kept = select_top_pairs(pairs, 1)

        assert kept == [SimilarityPair(a, b, 0.9)]

    def test_keeps_everything_under_limit(self):
        a, b, c = sorted(uuid.uuid4() for _ in range(3))
        pairs = [SimilarityPair(a, b, 0.5), SimilarityPair(b, c, 0.7)]

        kept = select_top_pairs(pairs, 5)

        assert [p.similarity for p in kept] == [0.7, 0.5]


class TestComputePairs:
    """Tests for pairwise scoring on dense vectors."""

    def test_pairs_are_order_normalized_and_above_floor(self):
        ids = [uuid.uuid4() for _ in range(4)]
        vectors = np.array(
            [[1.0, 0.0], [0.0, 1.0], [0.8, 0.6], [1.0, 0.0]],
        )

        pairs = compute_pairs(ids, vectors, min_similarity=0.5, max_per_conversation=10, workers=3)

        assert all(p.conversation_a_id < p.conversation_b_id for p in pairs)
        assert all(p.similarity >= 0.5 for p in pairs)
        unordered = {frozenset((p.conversation_a_id, p.conversation_b_id)) for p in pairs}
        assert len(unordered) == len(pairs)
        assert frozenset((ids[0], ids[3])) in unordered
        assert frozenset((ids[0], ids[1])) not in unordered

    def test_similarity_capped_at_one(self):
        ids = [uuid.uuid4(), uuid.uuid4()]
        vectors = np.array([[1.0000001, 0.0], [1.0, 0.0]])

        pairs = compute_pairs(ids, vectors, min_similarity=0.0, max_per_conversation=5)

        assert pairs[0].similarity <= 1.0

    def test_tfidf_empty_vocabulary(self):
        assert build_tfidf_matrix(["123 456", "7 8"]) == (None, None)


class TestSimilarityEngine:
    """Tests for SimilarityEngine."""

    def test_calculate_stores_normalized_unique_pairs(self, db_session, corpus):
        result = SimilarityEngine(db_session, _options()).calculate()

        edges = db_session.query(ConversationSimilarity).filter_by(inference_run_id=result.run_id).all()
        assert result.conversation_count == 5
        assert result.pairs_stored == len(edges) > 0
        for edge in edges:
            assert edge.conversation_a_id < edge.conversation_b_id
            assert 0.1 <= edge.similarity <= 1.0
            assert edge.method == SimilarityMethod.TFIDF_COSINE
        pairs = {(e.conversation_a_id, e.conversation_b_id) for e in edges}
        assert len(pairs) == len(edges)

    def test_partner_limit(self, db_session, corpus):
        result = SimilarityEngine(db_session, _options(max_pairs_per_conversation=1)).calculate()

        edges = db_session.query(ConversationSimilarity).filter_by(inference_run_id=result.run_id).all()
        partners: dict = {}
        for edge in edges:
            partners[edge.conversation_a_id] = partners.get(edge.conversation_a_id, 0) + 1
            partners[edge.conversation_b_id] = partners.get(edge.conversation_b_id, 0) + 1
        assert all(count <= 1 for count in partners.values())

    def test_run_recorded_even_without_pairs(self, db_session, conversation_factory):
        conversation_factory([("user", "Only one conversation")])

        result = SimilarityEngine(db_session, _options()).calculate()

        run = db_session.get(InferenceRun, result.run_id)
        assert run.status == InferenceRunStatus.COMPLETED
        assert result.pairs_stored == 0

    def test_find_similar_uses_stored_edges(self, db_session, corpus):
        engine = SimilarityEngine(db_session, _options())
        engine.calculate()

        similar = engine.find_similar(corpus["garden1"].id, limit=2)

        assert similar
        assert {s.conversation_id for s in similar} <= {corpus["garden2"].id, corpus["garden3"].id}
        scores = [s.similarity for s in similar]
        assert scores == sorted(scores, reverse=True)

    def test_find_similar_live_fallback(self, db_session, corpus):
        similar = SimilarityEngine(db_session, _options()).find_similar(corpus["backup1"].id, limit=1)

        assert [s.conversation_id for s in similar] == [corpus["backup2"].id]
        assert similar[0].title == "Encrypted rsync backup snapshots to external disk"
        assert similar[0].message_count == 1

    def test_find_similar_missing_conversation(self, db_session):
        with pytest.raises(NotFoundError):
            SimilarityEngine(db_session, _options()).find_similar(uuid.uuid4())

    def test_search_similar(self, db_session, corpus):
        results = SimilarityEngine(db_session, _options()).search_similar("rsync snapshots", limit=5)

        assert {r.conversation_id for r in results} == {corpus["backup1"].id, corpus["backup2"].id}

    def test_get_similarity(self, db_session, corpus):
        engine = SimilarityEngine(db_session, _options())
        a, b = corpus["garden1"].id, corpus["garden2"].id

        live = engine.get_similarity(a, b)
        engine.calculate()
        stored = engine.get_similarity(b, a)

        assert engine.get_similarity(a, a) == 1.0
        assert live == pytest.approx(stored, abs=1e-6)
        assert engine.get_similarity(a, uuid.uuid4()) is None

    def test_segment_embedding_requires_cache(self, db_session):
        options = _options(method=SimilarityMethod.SEGMENT_EMBEDDING)

        with pytest.raises(ConfigurationError):
            SimilarityEngine(db_session, options).calculate()

    def test_segment_embedding_without_embeddings_fails_run(self, db_session, fake_provider):
        cache = EmbeddingCache(db_session, fake_provider, dimensions=64)
        options = _options(method=SimilarityMethod.SEGMENT_EMBEDDING)

        with pytest.raises(ConfigurationError):
            SimilarityEngine(db_session, options, embedding_cache=cache).calculate()

        run = db_session.query(InferenceRun).filter_by(run_type=RunType.SIMILARITY).one()
        assert run.status == InferenceRunStatus.FAILED

    def test_segment_embedding_method(self, db_session, fake_provider, corpus, segment_factory):
        for conversation in corpus.values():
            segment_factory(conversation, conversation.title + " " + " ".join(["text"] * 3))
        cache = EmbeddingCache(db_session, fake_provider, dimensions=64)
        cache.generate_missing()
        options = _options(method=SimilarityMethod.SEGMENT_EMBEDDING, min_similarity=0.0)

        result = SimilarityEngine(db_session, options, embedding_cache=cache).calculate()

        assert result.conversation_count == 5
        run = db_session.get(InferenceRun, result.run_id)
        assert run.model_name == "embedding:fake-embed"
        assert result.pairs_stored == 10
