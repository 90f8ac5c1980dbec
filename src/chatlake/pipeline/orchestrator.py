"""
Import orchestrator: owns the ImportBatch lifecycle.

    staged -> processing -> committed | failed

A batch is created staged, its files are stored as raw artifacts, then it is
marked processing and every artifact is ingested. The batch commits when at
least one artifact was ingested (or there were none), and fails when every
artifact failed, when the import is cancelled, or on fatal I/O. Committed
batches are final. CLI and API callers share this code path and poll
get_status() for progress.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional

from sqlalchemy.orm import Session

from chatlake.db.repositories import ImportBatchRepository
from chatlake.exceptions import BatchStateError, ImportCancelledError
from chatlake.models.db import ImportBatch, ImportBatchStatus
from chatlake.parsers.registry import ParserRegistry
from chatlake.pipeline.ingestion import ArtifactIngestResult, IngestionEngine, ProgressCallback
from chatlake.storage.raw_store import RawStore
from chatlake.utils.dates import utc_now

logger = logging.getLogger(__name__)

NO_ARTIFACTS_SUCCEEDED = "No artifacts were ingested successfully"
IMPORT_CANCELLED = "Import was cancelled."

_ALLOWED_TRANSITIONS = {
    ImportBatchStatus.STAGED: {ImportBatchStatus.PROCESSING, ImportBatchStatus.FAILED},
    ImportBatchStatus.PROCESSING: {ImportBatchStatus.COMMITTED, ImportBatchStatus.FAILED},
    ImportBatchStatus.COMMITTED: set(),
    ImportBatchStatus.FAILED: set(),
}


@dataclass
class ImportFile:
    """One file to import: a path on disk or an already-open binary stream."""

    artifact_type: str = "chatgpt"
    path: Optional[Path] = None
    stream: Optional[BinaryIO] = None
    name: Optional[str] = None
    content_type: Optional[str] = "application/json"

    def __post_init__(self) -> None:
        if (self.path is None) == (self.stream is None):
            raise ValueError("ImportFile needs exactly one of path or stream")
        if self.path is not None:
            self.path = Path(self.path)

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.path is not None:
            return self.path.name
        return "upload.json"

    @contextmanager
    def open(self) -> Iterator[BinaryIO]:
        if self.stream is not None:
            yield self.stream
        else:
            with open(self.path, "rb") as f:
                yield f


class ImportOrchestrator:
    """
    Runs imports and manages batch state.

    Args:
        session: Database session
        raw_store: Artifact storage
        registry: Parser registry
        commit_interval: Conversations per checkpoint commit
    """

    def __init__(
        self,
        session: Session,
        raw_store: Optional[RawStore] = None,
        registry: Optional[ParserRegistry] = None,
        commit_interval: Optional[int] = None,
    ):
        self.session = session
        self.raw_store = raw_store or RawStore()
        self.batches = ImportBatchRepository(session)
        self.engine = IngestionEngine(
            session, self.raw_store, registry=registry, commit_interval=commit_interval
        )

    def create_batch(
        self,
        source_system: str,
        source_version: Optional[str] = None,
        imported_by: Optional[str] = None,
        import_label: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ImportBatch:
        """Create a staged batch and commit it."""
        batch = self.batches.create(
            source_system=source_system,
            source_version=source_version,
            imported_by=imported_by,
            import_label=import_label,
            notes=notes,
            status=ImportBatchStatus.STAGED,
            created_at=utc_now(),
        )
        self.session.commit()
        logger.info(f"Created import batch {batch.id} ({source_system})")
        return batch

    def _transition(self, batch: ImportBatch, new_status: ImportBatchStatus) -> None:
        if new_status not in _ALLOWED_TRANSITIONS[batch.status]:
            raise BatchStateError(
                f"Batch {batch.id} cannot move from {batch.status.value} to {new_status.value}"
            )
        batch.status = new_status

    def _ensure_open(self, batch: ImportBatch) -> None:
        if batch.is_complete:
            raise BatchStateError(f"Batch {batch.id} is {batch.status.value}; it cannot be changed")

    def mark_processing(self, batch: ImportBatch) -> ImportBatch:
        self._transition(batch, ImportBatchStatus.PROCESSING)
        now = utc_now()
        batch.started_at = now
        batch.last_heartbeat_at = now
        self.session.commit()
        return batch

    def mark_committed(self, batch: ImportBatch) -> ImportBatch:
        self._transition(batch, ImportBatchStatus.COMMITTED)
        batch.completed_at = utc_now()
        batch.error_message = None
        self.session.commit()
        logger.info(
            f"Committed batch {batch.id}: {batch.processed_conversation_count} conversations"
        )
        return batch

    def mark_failed(self, batch: ImportBatch, error_message: str) -> ImportBatch:
        self._transition(batch, ImportBatchStatus.FAILED)
        batch.completed_at = utc_now()
        batch.error_message = error_message
        self.session.commit()
        logger.error(f"Batch {batch.id} failed: {error_message}")
        return batch

    def heartbeat(
        self, batch: ImportBatch, processed: Optional[int] = None, total: Optional[int] = None
    ) -> ImportBatch:
        """Record liveness and, optionally, progress counters."""
        self._ensure_open(batch)
        batch.last_heartbeat_at = utc_now()
        if processed is not None:
            batch.processed_conversation_count = processed
        if total is not None:
            batch.total_conversation_count = total
        self.session.commit()
        return batch

    def run_import(
        self,
        files: List[ImportFile],
        source_system: str = "chatgpt",
        source_version: Optional[str] = None,
        imported_by: Optional[str] = None,
        import_label: Optional[str] = None,
        notes: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportBatch:
        """
        Import a set of files as one batch.

        Returns:
            The batch, committed or failed

        Raises:
            ImportCancelledError: If cancel_event was set (the batch is failed)
            ArtifactUnreadableError: On fatal I/O (the batch is failed)
        """
        batch = self.create_batch(
            source_system,
            source_version=source_version,
            imported_by=imported_by,
            import_label=import_label,
            notes=notes,
        )
        try:
            artifacts = []
            for import_file in files:
                with import_file.open() as stream:
                    artifacts.append(
                        self.raw_store.store(
                            self.session,
                            batch,
                            stream,
                            import_file.artifact_type,
                            import_file.display_name,
                            import_file.content_type,
                        )
                    )
            self.session.commit()

            self.mark_processing(batch)
            results: List[ArtifactIngestResult] = []
            for artifact in artifacts:
                if cancel_event is not None and cancel_event.is_set():
                    raise ImportCancelledError(IMPORT_CANCELLED)
                results.append(
                    self.engine.ingest_artifact(
                        batch, artifact, cancel_event=cancel_event, on_progress=on_progress
                    )
                )

            batch.total_conversation_count = batch.processed_conversation_count
            if artifacts and not any(r.succeeded for r in results):
                self.mark_failed(batch, NO_ARTIFACTS_SUCCEEDED)
            else:
                self.mark_committed(batch)
        except ImportCancelledError:
            self.session.rollback()
            self.mark_failed(batch, IMPORT_CANCELLED)
            raise
        except Exception as e:
            self.session.rollback()
            if not batch.is_complete:
                self.mark_failed(batch, str(e) or type(e).__name__)
            raise

        return batch

    def get_status(self, batch_id: uuid.UUID) -> Optional[ImportBatch]:
        batch = self.batches.get(batch_id)
        if batch is not None:
            self.session.refresh(batch)
        return batch

    def list_batches(self, limit: int = 50) -> List[ImportBatch]:
        return self.batches.get_recent(limit=limit)
