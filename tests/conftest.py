"""
Pytest configuration and fixtures for ChatLake tests.

This module provides shared fixtures for the database, raw storage, a
deterministic model provider, and factories for export files and rows.
"""

import os

# Settings are read at import time; keep tests off Postgres and the log directory
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite:///:memory:")
os.environ.setdefault("LOG_FILE_ENABLED", "false")

import hashlib
import io
import json
import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Generator, Optional

import numpy as np
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from chatlake.db.connection import enable_sqlite_savepoints
from chatlake.inference.runs import RunTracker
from chatlake.models.db import (
    Base,
    Conversation,
    ConversationSegment,
    ImportBatch,
    ImportBatchStatus,
    InferenceRun,
    Message,
    RunType,
)
from chatlake.providers.base import LLMResponse, ModelProvider
from chatlake.storage.raw_store import RawStore
from chatlake.utils.hashing import calculate_content_hash, calculate_conversation_key

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},  # Allow cross-thread access for TestClient
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Each test runs inside an outer transaction that is rolled back afterwards.
    Code under test may commit freely: commits release savepoints only.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def api_client(db_session: Session):
    """Create a test client for FastAPI with database dependency override."""
    from fastapi.testclient import TestClient

    from chatlake.api.app import app
    from chatlake.db.connection import get_db

    def override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def raw_store(tmp_path) -> RawStore:
    return RawStore(root=tmp_path / "artifacts", inline_max_bytes=0)


# ===== Model provider =====


class FakeProvider(ModelProvider):
    """
    Deterministic in-process provider.

    Embeddings are hashed bags of words, so texts sharing vocabulary point
    the same way. Completions return a fixed string.
    """

    def __init__(
        self,
        dimensions: int = 64,
        completion: Optional[str] = "Home Garden Planning",
        available: bool = True,
        fail_embeddings: bool = False,
    ):
        self.dimensions = dimensions
        self.completion = completion
        self.available = available
        self.fail_embeddings = fail_embeddings
        self.embed_calls = 0
        self.prompts: list[str] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return "fake-text"

    @property
    def embedding_model_name(self) -> str:
        return "fake-embed"

    def _embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        if self.fail_embeddings:
            raise RuntimeError("embedding backend unavailable")
        vector = np.zeros(self.dimensions)
        for word in re.findall(r"[a-z]+", text.lower()):
            index = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimensions
            vector[index] += 1.0
        vector[0] += 0.01  # Never all zeros
        return vector.tolist()

    def _complete(self, prompt: str, temperature: float, max_tokens: int) -> LLMResponse:
        self.prompts.append(prompt)
        if self.completion is None:
            raise RuntimeError("generation backend unavailable")
        return LLMResponse(content=self.completion, model="fake-text", duration_ms=1.0)

    def _available(self) -> bool:
        return self.available


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_provider():
    """Build a FakeProvider with custom behaviour."""
    return FakeProvider


# ===== Export builders =====


def build_chatgpt_conversation(
    conversation_id: str,
    turns: list[tuple[str, str]],
    title: Optional[str] = None,
    start: float = 1_704_067_200.0,
) -> dict:
    """One ChatGPT export entry whose mapping is a single linear thread."""
    mapping: dict = {
        "root": {"id": "root", "parent": None, "children": [], "message": None}
    }
    previous = "root"
    for index, (role, text) in enumerate(turns):
        node_id = f"{conversation_id}-node-{index}"
        mapping[node_id] = {
            "id": node_id,
            "parent": previous,
            "children": [],
            "message": {
                "id": node_id,
                "author": {"role": role},
                "create_time": start + index * 60,
                "content": {"content_type": "text", "parts": [text]},
            },
        }
        mapping[previous]["children"].append(node_id)
        previous = node_id
    return {
        "id": conversation_id,
        "title": title or conversation_id,
        "create_time": start,
        "mapping": mapping,
        "current_node": previous,
    }


@pytest.fixture
def chatgpt_entry():
    """Builder for single ChatGPT export entries."""
    return build_chatgpt_conversation


@pytest.fixture
def chatgpt_export():
    """Build ChatGPT export bytes from conversation entries."""

    def _build(*entries: dict) -> bytes:
        return json.dumps(list(entries)).encode("utf-8")

    return _build


@pytest.fixture
def two_conversation_export(chatgpt_export) -> bytes:
    """Two conversations of three messages each."""
    return chatgpt_export(
        build_chatgpt_conversation(
            "conv-garden",
            [
                ("user", "When should I plant tomatoes?"),
                ("assistant", "Plant tomatoes after the last frost."),
                ("user", "Thanks, and how deep?"),
            ],
            title="Tomatoes",
        ),
        build_chatgpt_conversation(
            "conv-backup",
            [
                ("user", "How do I rotate my backups?"),
                ("assistant", "Use a grandfather-father-son schedule."),
                ("user", "Can rsync do that?"),
            ],
            title="Backups",
            start=1_706_745_600.0,
        ),
    )


# ===== Row factories =====


@pytest.fixture
def batch_factory(db_session: Session):
    """Create ImportBatch rows."""

    def _create(
        status: ImportBatchStatus = ImportBatchStatus.COMMITTED,
        source_system: str = "chatgpt",
        created_at: Optional[datetime] = None,
        started_at: Optional[datetime] = None,
        last_heartbeat_at: Optional[datetime] = None,
    ) -> ImportBatch:
        batch = ImportBatch(
            source_system=source_system,
            status=status,
            created_at=created_at or datetime.now(UTC),
            started_at=started_at,
            last_heartbeat_at=last_heartbeat_at,
        )
        db_session.add(batch)
        db_session.flush()
        return batch

    return _create


@pytest.fixture
def conversation_factory(db_session: Session, batch_factory):
    """
    Create a Conversation with its Messages.

    Turns are (role, content) pairs; message timestamps start at
    first_message_at and advance one minute per turn.
    """

    def _create(
        turns: list[tuple[str, str]],
        batch: Optional[ImportBatch] = None,
        title: Optional[str] = None,
        first_message_at: Optional[datetime] = None,
        source_system: str = "chatgpt",
    ) -> Conversation:
        batch = batch or batch_factory()
        start = first_message_at or BASE_TIME
        conversation = Conversation(
            conversation_key=calculate_conversation_key(turns),
            source_system=source_system,
            external_conversation_id=str(uuid.uuid4()),
            title=title,
            first_message_at=start,
            last_message_at=start + timedelta(minutes=max(0, len(turns) - 1)),
            created_from_import_batch_id=batch.id,
            last_seen_import_batch_id=batch.id,
        )
        db_session.add(conversation)
        db_session.flush()
        for index, (role, content) in enumerate(turns):
            db_session.add(
                Message(
                    conversation_id=conversation.id,
                    role=role,
                    sequence_index=index,
                    content=content,
                    content_hash=calculate_content_hash(content),
                    message_timestamp=start + timedelta(minutes=index),
                )
            )
        db_session.flush()
        return conversation

    return _create


@pytest.fixture
def run_factory(db_session: Session):
    """Create a completed InferenceRun of a given type."""

    def _create(run_type: RunType = RunType.SEGMENTATION) -> InferenceRun:
        tracker = RunTracker(db_session)
        run = tracker.start(run_type, "test-model", "1.0.0", "test", {"type": run_type.value})
        return tracker.complete(run)

    return _create


@pytest.fixture
def segment_factory(db_session: Session, run_factory):
    """Create ConversationSegments directly, bypassing the segmentation engine."""

    def _create(
        conversation: Conversation,
        content: str,
        segment_index: int = 0,
        run: Optional[InferenceRun] = None,
    ) -> ConversationSegment:
        run = run or run_factory(RunType.SEGMENTATION)
        segment = ConversationSegment(
            conversation_id=conversation.id,
            inference_run_id=run.id,
            segment_index=segment_index,
            start_message_index=0,
            end_message_index=0,
            message_count=1,
            content_text=content,
            content_hash=calculate_content_hash(content),
        )
        db_session.add(segment)
        db_session.flush()
        return segment

    return _create


@pytest.fixture
def upload():
    """Wrap bytes as a readable binary stream."""

    def _wrap(data: bytes) -> io.BytesIO:
        return io.BytesIO(data)

    return _wrap
