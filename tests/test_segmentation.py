"""
Tests for conversation segmentation.
"""

import threading

import numpy as np
import pytest

from chatlake.exceptions import ImportCancelledError
from chatlake.inference.segmentation import (
    SegmentationEngine,
    SegmentationOptions,
    detect_boundaries,
    is_profile_context,
    substantive_messages,
)
from chatlake.models.db import ConversationSegment, InferenceRun, InferenceRunStatus, RunType

TOPICS = [
    "tomato garden soil compost watering seedlings",
    "backup rsync snapshot retention encryption disk",
    "sourdough starter flour hydration oven crust",
    "marathon training pace interval recovery shoes",
]


def _options(**overrides) -> SegmentationOptions:
    values = dict(
        window_size=4,
        similarity_threshold=0.55,
        min_segment_size=3,
        max_segment_size=50,
        min_conversation_messages=3,
        min_content_length=50,
    )
    values.update(overrides)
    return SegmentationOptions(**values)


def _turns(count: int, per_topic: int = 10) -> list[tuple[str, str]]:
    return [
        ("user" if i % 2 == 0 else "assistant", f"{TOPICS[(i // per_topic) % len(TOPICS)]} note {i}")
        for i in range(count)
    ]


class TestDetectBoundaries:
    """Tests for boundary placement on synthetic window vectors."""

    def test_short_conversation_is_one_segment(self):
        assert detect_boundaries([np.ones(3)], 3, _options()) == [0]

    def test_topic_shift_places_boundary(self):
        a, b = np.array([1.0, 0.0]), np.array([0.0, 1.0])
        windows = [a] * 6 + [b] * 3

        assert detect_boundaries(windows, 12, _options()) == [0, 6]

    def test_no_boundary_before_min_size(self):
        a, b = np.array([1.0, 0.0]), np.array([0.0, 1.0])
        windows = [a, b, b, b, b, b, b, b, b]

        assert detect_boundaries(windows, 12, _options()) == [0]

    def test_no_boundary_leaving_short_tail(self):
        a, b = np.array([1.0, 0.0]), np.array([0.0, 1.0])
        windows = [a] * 10 + [b]

        assert detect_boundaries(windows, 12, _options()) == [0]

    def test_long_uniform_conversation_splits_at_max_size(self):
        windows = [np.ones(4)] * 117

        assert detect_boundaries(windows, 120, _options()) == [0, 50, 100]

    def test_oversized_split_keeps_min_size_tail(self):
        windows = [np.ones(4)] * 49

        boundaries = detect_boundaries(windows, 52, _options())

        assert boundaries == [0, 49]

    def test_missing_window_vectors_never_shift(self):
        windows = [np.ones(2)] * 5 + [None] * 4

        assert detect_boundaries(windows, 12, _options()) == [0]

    def test_invalid_options(self):
        with pytest.raises(ValueError):
            _options(max_segment_size=5)
        with pytest.raises(ValueError):
            _options(window_size=0)


class TestMessageFilters:
    """Tests for substantive message selection."""

    def test_profile_context_detected(self):
        blob = '{"content_type": "user_editable_context", "user_profile": "I garden"}'

        assert is_profile_context(blob)
        assert not is_profile_context("{not a profile}")
        assert not is_profile_context(None)

    def test_system_and_profile_messages_dropped(self, db_session, conversation_factory):
        conversation = conversation_factory(
            [
                ("system", "You are helpful"),
                ("user", '{"content_type": "user_editable_context", "user_instructions": "x"}'),
                ("user", "Real question"),
            ]
        )

        from chatlake.db.repositories import MessageRepository

        kept = substantive_messages(MessageRepository(db_session).get_by_conversation(conversation.id))

        assert [m.content for m in kept] == ["Real question"]


class TestSegmentationEngine:
    """Tests for SegmentationEngine."""

    def test_forty_message_conversation_invariants(
        self, db_session, conversation_factory, fake_provider
    ):
        conversation = conversation_factory(_turns(40))
        engine = SegmentationEngine(db_session, fake_provider, options=_options())

        result = engine.segment_all()

        segments = (
            db_session.query(ConversationSegment)
            .filter_by(conversation_id=conversation.id)
            .order_by(ConversationSegment.segment_index)
            .all()
        )
        assert result.conversations_processed == 1
        assert result.segments_created == len(segments)
        assert segments[0].start_message_index == 0
        assert segments[-1].end_message_index == 39
        assert sum(s.message_count for s in segments) == 40
        for segment in segments:
            assert 3 <= segment.message_count <= 50
            assert segment.end_message_index - segment.start_message_index + 1 == segment.message_count
        for previous, current in zip(segments, segments[1:]):
            assert current.start_message_index == previous.end_message_index + 1

    def test_run_is_recorded(self, db_session, conversation_factory, fake_provider):
        conversation_factory(_turns(12))
        engine = SegmentationEngine(db_session, fake_provider, options=_options())

        result = engine.segment_all()

        run = db_session.get(InferenceRun, result.run_id)
        assert run.run_type == RunType.SEGMENTATION
        assert run.status == InferenceRunStatus.COMPLETED
        assert run.model_name == "fake-embed"
        assert run.metrics["segments_created"] == result.segments_created

    def test_segmentation_runs_once_per_conversation(
        self, db_session, conversation_factory, fake_provider
    ):
        conversation_factory(_turns(12))
        engine = SegmentationEngine(db_session, fake_provider, options=_options())
        engine.segment_all()
        count = db_session.query(ConversationSegment).count()

        second = engine.segment_all()

        assert second.run_id is None
        assert db_session.query(ConversationSegment).count() == count

    def test_short_conversation_skipped(self, db_session, conversation_factory, fake_provider):
        conversation_factory([("user", "Hi"), ("assistant", "Hello")])
        engine = SegmentationEngine(db_session, fake_provider, options=_options())

        result = engine.segment_all()

        assert result.conversations_skipped == 1
        assert result.segments_created == 0

    def test_content_hash_matches_text(self, db_session, conversation_factory, fake_provider):
        from chatlake.utils.hashing import calculate_content_hash

        conversation_factory(_turns(8))
        SegmentationEngine(db_session, fake_provider, options=_options()).segment_all()

        for segment in db_session.query(ConversationSegment).all():
            assert segment.content_hash == calculate_content_hash(segment.content_text)

    def test_reset_all_segments(self, db_session, conversation_factory, fake_provider):
        conversation_factory(_turns(12))
        engine = SegmentationEngine(db_session, fake_provider, options=_options())
        engine.segment_all()

        deleted = engine.reset_all_segments()

        assert deleted > 0
        assert db_session.query(ConversationSegment).count() == 0
        assert engine.segment_all().segments_created == deleted

    def test_cancel_fails_run(self, db_session, conversation_factory, fake_provider):
        conversation_factory(_turns(12))
        cancel = threading.Event()
        cancel.set()
        engine = SegmentationEngine(db_session, fake_provider, options=_options())

        with pytest.raises(ImportCancelledError):
            engine.segment_all(cancel_event=cancel)

        run = db_session.query(InferenceRun).filter_by(run_type=RunType.SEGMENTATION).one()
        assert run.status == InferenceRunStatus.FAILED

    def test_get_segments_preview(self, db_session, conversation_factory, fake_provider):
        conversation = conversation_factory(_turns(12))
        engine = SegmentationEngine(db_session, fake_provider, options=_options())
        engine.segment_all()

        previews = engine.get_segments(conversation.id)

        assert previews[0].segment_index == 0
        assert len(previews[0].preview) <= 103
