"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from chatlake.db.repositories.base import BaseRepository
from chatlake.db.repositories.conversation import (
    ConversationArtifactMapRepository,
    ConversationRepository,
    MessageRepository,
)
from chatlake.db.repositories.import_batch import ImportBatchRepository
from chatlake.db.repositories.inference_run import InferenceRunRepository
from chatlake.db.repositories.parsing_failure import ParsingFailureRepository
from chatlake.db.repositories.project import (
    ProjectConversationRepository,
    ProjectRepository,
)
from chatlake.db.repositories.raw_artifact import RawArtifactRepository
from chatlake.db.repositories.segment import (
    SegmentEmbeddingRepository,
    SegmentRepository,
)
from chatlake.db.repositories.similarity import ConversationSimilarityRepository
from chatlake.db.repositories.suggestion import ProjectSuggestionRepository
from chatlake.db.repositories.topic import (
    ConversationTopicRepository,
    ProjectDriftMetricRepository,
    TopicRepository,
)

__all__ = [
    "BaseRepository",
    "ConversationArtifactMapRepository",
    "ConversationRepository",
    "ConversationSimilarityRepository",
    "ConversationTopicRepository",
    "ImportBatchRepository",
    "InferenceRunRepository",
    "MessageRepository",
    "ParsingFailureRepository",
    "ProjectConversationRepository",
    "ProjectDriftMetricRepository",
    "ProjectRepository",
    "ProjectSuggestionRepository",
    "RawArtifactRepository",
    "SegmentEmbeddingRepository",
    "SegmentRepository",
    "TopicRepository",
]
