"""
Topic extraction with Latent Dirichlet Allocation.

Each conversation's messages are joined into one document. A bag of words
(English stop words removed) feeds an LDA model with a fixed random state;
topic keywords come from the topic-word matrix and every conversation gets a
score per topic from its document-topic distribution. Scores below
min_score_threshold are not stored.
"""

import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
from sklearn.decomposition import LatentDirichletAllocation
from sklearn.feature_extraction.text import CountVectorizer
from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import (
    ConversationTopicRepository,
    InferenceRunRepository,
    TopicRepository,
)
from chatlake.exceptions import ConfigurationError
from chatlake.inference.runs import RunTracker
from chatlake.models.db import Message, RunType

logger = logging.getLogger(__name__)

MODEL_NAME = "chatlake.lda"
RANDOM_STATE = 42

# Words of three or more letters
TOKEN_PATTERN = r"(?u)\b[^\W\d_]{3,}\b"


@dataclass
class TopicOptions:
    topic_count: int = field(default_factory=lambda: settings.topic_count)
    keywords_per_topic: int = field(default_factory=lambda: settings.topic_keywords_per_topic)
    min_score_threshold: float = field(default_factory=lambda: settings.topic_min_score)
    max_iterations: int = 100
    model_version: str = "1.0.0"

    def feature_config(self) -> dict:
        return {
            "model_name": MODEL_NAME,
            "model_version": self.model_version,
            "topic_count": self.topic_count,
            "keywords_per_topic": self.keywords_per_topic,
            "min_score_threshold": self.min_score_threshold,
            "max_iterations": self.max_iterations,
            "seed": RANDOM_STATE,
        }


@dataclass
class TopicExtractionResult:
    run_id: Optional[uuid.UUID]
    conversation_count: int
    topic_count: int
    assignments_created: int
    elapsed_seconds: float = 0.0


@dataclass
class TopicSummary:
    topic_id: uuid.UUID
    label: str
    keywords: List[str]
    conversation_count: int


@dataclass
class ConversationTopicScore:
    topic_id: uuid.UUID
    label: str
    score: float


def topic_label(keywords: List[str], topic_index: int) -> str:
    """First three keywords, or "Topic N" (1-based) when there are none."""
    if keywords:
        return ", ".join(keywords[:3])
    return f"Topic {topic_index + 1}"


def top_keywords(components: np.ndarray, vocabulary: np.ndarray, count: int) -> List[List[str]]:
    """Highest-weighted words of each topic row, ties broken alphabetically."""
    keywords = []
    for row in components:
        order = sorted(range(len(vocabulary)), key=lambda i: (-row[i], vocabulary[i]))
        keywords.append([str(vocabulary[i]) for i in order[:count]])
    return keywords


class TopicExtractor:
    """Runs topic extraction and reads back its results."""

    def __init__(
        self,
        session: Session,
        options: Optional[TopicOptions] = None,
        run_tracker: Optional[RunTracker] = None,
    ):
        self.session = session
        self.options = options or TopicOptions()
        self.runs = run_tracker or RunTracker(session)
        self.topics = TopicRepository(session)
        self.conversation_topics = ConversationTopicRepository(session)
        self.run_repo = InferenceRunRepository(session)

    def _load_documents(self) -> Dict[uuid.UUID, str]:
        grouped: Dict[uuid.UUID, List[str]] = defaultdict(list)
        rows = (
            self.session.query(Message.conversation_id, Message.content)
            .order_by(Message.conversation_id, Message.sequence_index)
            .all()
        )
        for conversation_id, content in rows:
            grouped[conversation_id].append(content)
        return {cid: " ".join(grouped[cid]) for cid in sorted(grouped)}

    def extract(self) -> TopicExtractionResult:
        """
        Extract topics from every conversation in one topics run.

        Returns:
            TopicExtractionResult (run_id is None when there are no conversations)

        Raises:
            ConfigurationError: If the conversations contain no usable words
        """
        start_time = time.time()
        documents = self._load_documents()
        if not documents:
            logger.info("No conversations to extract topics from")
            return TopicExtractionResult(None, 0, 0, 0)

        ids = list(documents)
        with self.runs.track(
            RunType.TOPICS,
            model_name=MODEL_NAME,
            model_version=self.options.model_version,
            input_scope="all_conversations",
            feature_config=self.options.feature_config(),
            input_description=(
                f"Extracting {self.options.topic_count} topics from {len(ids)} conversations"
            ),
        ) as run:
            vectorizer = CountVectorizer(
                lowercase=True, stop_words="english", token_pattern=TOKEN_PATTERN
            )
            try:
                counts = vectorizer.fit_transform(list(documents.values()))
            except ValueError as e:
                raise ConfigurationError(f"No usable words for topic extraction: {e}") from e

            lda = LatentDirichletAllocation(
                n_components=self.options.topic_count,
                max_iter=self.options.max_iterations,
                learning_method="batch",
                random_state=RANDOM_STATE,
            )
            distributions = lda.fit_transform(counts)
            keywords = top_keywords(
                lda.components_,
                vectorizer.get_feature_names_out(),
                self.options.keywords_per_topic,
            )

            topic_ids = []
            for index, words in enumerate(keywords):
                topic = self.topics.create(
                    inference_run_id=run.id,
                    topic_index=index,
                    label=topic_label(words, index),
                    keywords=words,
                )
                topic_ids.append(topic.id)

            assignments = 0
            for row, conversation_id in enumerate(ids):
                for index, score in enumerate(distributions[row]):
                    if score < self.options.min_score_threshold:
                        continue
                    self.conversation_topics.create(
                        inference_run_id=run.id,
                        conversation_id=conversation_id,
                        topic_id=topic_ids[index],
                        score=round(float(score), 6),
                    )
                    assignments += 1
            self.session.commit()

            self.runs.complete(
                run,
                {
                    "conversation_count": len(ids),
                    "topic_count": len(topic_ids),
                    "assignments_created": assignments,
                },
            )

        return TopicExtractionResult(
            run_id=run.id,
            conversation_count=len(ids),
            topic_count=len(topic_ids),
            assignments_created=assignments,
            elapsed_seconds=time.time() - start_time,
        )

    def _resolve_run_id(self, run_id: Optional[uuid.UUID]) -> Optional[uuid.UUID]:
        if run_id is not None:
            return run_id
        latest = self.run_repo.get_latest_completed(RunType.TOPICS)
        return latest.id if latest else None

    def get_topics(self, run_id: Optional[uuid.UUID] = None) -> List[TopicSummary]:
        """Topics of a run (default: latest completed topics run)."""
        run_id = self._resolve_run_id(run_id)
        if run_id is None:
            return []
        counts = self.topics.conversation_counts(run_id)
        return [
            TopicSummary(
                topic_id=t.id,
                label=t.label,
                keywords=list(t.keywords or []),
                conversation_count=counts.get(t.id, 0),
            )
            for t in self.topics.get_by_run(run_id)
        ]

    def get_conversation_topics(
        self, conversation_id: uuid.UUID, run_id: Optional[uuid.UUID] = None
    ) -> List[ConversationTopicScore]:
        """A conversation's topic scores, highest first."""
        run_id = self._resolve_run_id(run_id)
        if run_id is None:
            return []
        return [
            ConversationTopicScore(topic_id=ct.topic_id, label=ct.topic.label, score=ct.score)
            for ct in self.conversation_topics.get_by_conversation(conversation_id, run_id)
        ]
