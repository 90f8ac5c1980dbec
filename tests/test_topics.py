"""
Tests for LDA topic extraction.
"""

import numpy as np
import pytest

from chatlake.exceptions import ConfigurationError
from chatlake.inference.topics import TopicExtractor, TopicOptions, top_keywords, topic_label
from chatlake.models.db import (
    ConversationTopic,
    InferenceRun,
    InferenceRunStatus,
    RunType,
    Topic,
)

GARDEN = "tomato seedlings compost garden soil watering tomato garden compost"
BACKUP = "rsync backup snapshots retention encrypted backup disk rsync snapshots"


def _options(**overrides) -> TopicOptions:
    values = dict(topic_count=2, keywords_per_topic=4, min_score_threshold=0.05, max_iterations=20)
    values.update(overrides)
    return TopicOptions(**values)


@pytest.fixture
def topic_corpus(conversation_factory):
    garden = [conversation_factory([("user", f"{GARDEN} {i}")]) for i in range(3)]
    backup = [conversation_factory([("user", f"{BACKUP} {i}")]) for i in range(3)]
    return garden, backup


class TestKeywordHelpers:
    def test_topic_label_uses_first_three_keywords(self):
        assert topic_label(["garden", "soil", "tomato", "water"], 0) == "garden, soil, tomato"

    def test_topic_label_fallback(self):
        assert topic_label([], 4) == "Topic 5"

    def test_top_keywords_breaks_ties_alphabetically(self):
        components = np.array([[1.0, 3.0, 3.0], [2.0, 0.0, 1.0]])
        vocabulary = np.array(["zeta", "beta", "alpha"])

        assert top_keywords(components, vocabulary, 2) == [["alpha", "beta"], ["zeta", "alpha"]]


class TestTopicExtractor:
    """Tests for TopicExtractor."""

    def test_no_conversations(self, db_session):
        result = TopicExtractor(db_session, _options()).extract()

        assert result.run_id is None
        assert result.conversation_count == 0
        assert db_session.query(InferenceRun).filter_by(run_type=RunType.TOPICS).count() == 0

    def test_extract_stores_topics_and_scores(self, db_session, topic_corpus):
        result = TopicExtractor(db_session, _options()).extract()

        assert result.conversation_count == 6
        assert result.topic_count == 2
        topics = db_session.query(Topic).filter_by(inference_run_id=result.run_id).all()
        assert sorted(t.topic_index for t in topics) == [0, 1]
        assert all(0 < len(t.keywords) <= 4 for t in topics)

        scores = db_session.query(ConversationTopic).filter_by(inference_run_id=result.run_id).all()
        assert len(scores) == result.assignments_created
        assert all(s.score >= 0.05 for s in scores)

        run = db_session.get(InferenceRun, result.run_id)
        assert run.status == InferenceRunStatus.COMPLETED
        assert run.metrics["assignments_created"] == result.assignments_created

    def test_stop_words_excluded(self, db_session, conversation_factory):
        conversation_factory([("user", "the garden and the soil for the tomato")])
        conversation_factory([("user", "with backup and with rsync")])

        result = TopicExtractor(db_session, _options()).extract()

        keywords = {k for t in TopicExtractor(db_session).get_topics(result.run_id) for k in t.keywords}
        assert "the" not in keywords
        assert "and" not in keywords

    def test_extraction_is_reproducible(self, db_session, topic_corpus):
        extractor = TopicExtractor(db_session, _options())

        first = extractor.get_topics(extractor.extract().run_id)
        second = extractor.get_topics(extractor.extract().run_id)

        assert [t.keywords for t in first] == [t.keywords for t in second]

    def test_no_usable_words_fails_run(self, db_session, conversation_factory):
        conversation_factory([("user", "the and of")])

        with pytest.raises(ConfigurationError):
            TopicExtractor(db_session, _options()).extract()

        run = db_session.query(InferenceRun).filter_by(run_type=RunType.TOPICS).one()
        assert run.status == InferenceRunStatus.FAILED

    def test_get_topics_defaults_to_latest_run(self, db_session, topic_corpus):
        extractor = TopicExtractor(db_session, _options())
        extractor.extract()
        latest = extractor.extract()

        topics = extractor.get_topics()

        assert {t.topic_id for t in topics} == {
            t.id for t in db_session.query(Topic).filter_by(inference_run_id=latest.run_id)
        }
        assert sum(t.conversation_count for t in topics) >= 6

    def test_get_topics_without_runs(self, db_session):
        assert TopicExtractor(db_session).get_topics() == []

    def test_conversation_topics_sorted(self, db_session, topic_corpus):
        garden, _ = topic_corpus
        extractor = TopicExtractor(db_session, _options(min_score_threshold=0.0))
        extractor.extract()

        scores = extractor.get_conversation_topics(garden[0].id)

        assert len(scores) == 2
        assert scores[0].score >= scores[1].score
        assert sum(s.score for s in scores) == pytest.approx(1.0, abs=1e-3)
