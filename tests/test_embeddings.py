"""
Tests for the segment embedding cache.
"""

import threading

import numpy as np
import pytest

from chatlake.exceptions import AllUnitsFailedError, ImportCancelledError
from chatlake.inference.embeddings import (
    EmbeddingCache,
    deserialize_vector,
    extract_substantive_content,
    serialize_vector,
)
from chatlake.models.db import InferenceRun, InferenceRunStatus, RunType, SegmentEmbedding
from chatlake.utils.hashing import calculate_content_hash


@pytest.fixture
def cache(db_session, fake_provider) -> EmbeddingCache:
    return EmbeddingCache(db_session, fake_provider, dimensions=64, checkpoint_interval=2)


@pytest.fixture
def segments(conversation_factory, segment_factory, run_factory):
    conversation = conversation_factory([("user", "Plant tomatoes"), ("assistant", "After frost")])
    run = run_factory(RunType.SEGMENTATION)
    return [
        segment_factory(conversation, text, segment_index=i, run=run)
        for i, text in enumerate(
            [
                "tomato garden soil compost",
                "backup rsync snapshot retention",
                "sourdough starter flour hydration",
            ]
        )
    ]


class TestVectorSerialization:
    """Tests for vector byte encoding."""

    def test_float32_little_endian(self):
        data = serialize_vector([1.0, -2.5, 3.25])

        assert len(data) == 12
        assert deserialize_vector(data).tolist() == [1.0, -2.5, 3.25]


class TestExtractSubstantiveContent:
    """Tests for opener removal before embedding."""

    def test_drops_short_first_paragraph(self):
        text = "Hi!\n\nHow do I configure rsync for nightly backups?"

        assert extract_substantive_content(text) == "How do I configure rsync for nightly backups?"

    def test_keeps_long_first_paragraph(self):
        text = "x" * 200 + "\n\nsecond"

        assert extract_substantive_content(text) == text

    def test_drops_short_first_sentence(self):
        text = "Thanks. Now explain sourdough hydration ratios in detail."

        assert extract_substantive_content(text) == "Now explain sourdough hydration ratios in detail."

    def test_single_sentence_unchanged(self):
        assert extract_substantive_content("Only one sentence here") == "Only one sentence here"


class TestEmbeddingCache:
    """Tests for EmbeddingCache."""

    def test_get_or_generate_caches(self, db_session, cache, fake_provider, segments):
        first = cache.get_or_generate(segments[0].id)
        calls = fake_provider.embed_calls

        second = cache.get_or_generate(segments[0].id)

        assert first is not None
        assert np.array_equal(first, second)
        assert fake_provider.embed_calls == calls
        entry = db_session.query(SegmentEmbedding).filter_by(segment_id=segments[0].id).one()
        assert entry.embedding_model == "fake-embed"
        assert entry.dimensions == 64
        assert entry.source_content_hash == segments[0].content_hash

    def test_changed_content_regenerates(self, db_session, cache, fake_provider, segments):
        segment = segments[0]
        cache.get_or_generate(segment.id)
        calls = fake_provider.embed_calls

        segment.content_text = "completely different marathon training"
        segment.content_hash = calculate_content_hash(segment.content_text)
        db_session.flush()
        vector = cache.get_or_generate(segment.id)

        assert vector is not None
        assert fake_provider.embed_calls == calls + 1
        entries = db_session.query(SegmentEmbedding).filter_by(segment_id=segment.id).all()
        assert len(entries) == 1
        assert entries[0].source_content_hash == segment.content_hash

    def test_missing_segment_returns_none(self, cache):
        import uuid

        assert cache.get_or_generate(uuid.uuid4()) is None

    def test_generate_missing(self, db_session, cache, segments):
        result = cache.generate_missing()

        assert result.embeddings_generated == 3
        assert result.embeddings_failed == 0
        assert result.already_cached == 0
        run = db_session.get(InferenceRun, result.run_id)
        assert run.run_type == RunType.EMBEDDING
        assert run.status == InferenceRunStatus.COMPLETED
        assert db_session.query(SegmentEmbedding).count() == 3

    def test_generate_missing_skips_valid_entries(self, cache, fake_provider, segments):
        cache.generate_missing()
        calls = fake_provider.embed_calls

        result = cache.generate_missing()

        assert result.run_id is None
        assert result.already_cached == 3
        assert fake_provider.embed_calls == calls

    def test_all_units_failed_fails_run(self, db_session, make_provider, segments):
        cache = EmbeddingCache(db_session, make_provider(fail_embeddings=True), dimensions=64)

        with pytest.raises(AllUnitsFailedError):
            cache.generate_missing()

        run = db_session.query(InferenceRun).filter_by(run_type=RunType.EMBEDDING).one()
        assert run.status == InferenceRunStatus.FAILED
        assert db_session.query(SegmentEmbedding).count() == 0

    def test_cancel_keeps_nothing_new(self, db_session, cache, segments):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(ImportCancelledError):
            cache.generate_missing(cancel_event=cancel)

        run = db_session.query(InferenceRun).filter_by(run_type=RunType.EMBEDDING).one()
        assert run.status == InferenceRunStatus.FAILED

    def test_invalidate_stale(self, db_session, cache, segments):
        cache.generate_missing()
        segments[1].content_hash = calculate_content_hash("edited")
        db_session.flush()

        assert cache.invalidate_stale() == 1
        assert db_session.query(SegmentEmbedding).count() == 2
        assert cache.invalidate_stale() == 0

    def test_get_all_embeddings_sorted_and_valid_only(self, db_session, cache, segments):
        cache.generate_missing()
        segments[2].content_hash = calculate_content_hash("edited")
        db_session.flush()

        pairs = cache.get_all_embeddings()

        ids = [segment_id for segment_id, _ in pairs]
        assert ids == sorted(s.id for s in segments[:2])
        assert all(vector.shape == (64,) for _, vector in pairs)
