"""
Raw artifact storage.

Uploaded export files are written once and never modified. Bytes are
streamed to disk in chunks while the SHA-256 is computed, so memory does not
grow with file size. Small payloads may optionally be kept inline in the
database row instead.
"""

import hashlib
import io
import logging
import re
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO, Optional

from sqlalchemy.orm import Session

from chatlake.config import settings
from chatlake.db.repositories import RawArtifactRepository
from chatlake.exceptions import ArtifactUnreadableError
from chatlake.models.db import ImportBatch, RawArtifact
from chatlake.utils.hashing import calculate_stream_hash

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_file_name(name: str) -> str:
    cleaned = _UNSAFE_NAME_CHARS.sub("_", Path(name).name).strip("._")
    return cleaned[:120] or "artifact"


class RawStore:
    """
    Immutable storage for raw export files.

    Args:
        root: Directory under which per-batch artifact folders are created
        inline_max_bytes: Payloads at or below this size that decode as UTF-8
            are stored inline in the artifact row (0 disables inline storage)
    """

    def __init__(self, root: Optional[Path] = None, inline_max_bytes: Optional[int] = None):
        self.root = Path(root) if root is not None else settings.artifact_root
        self.inline_max_bytes = (
            settings.inline_artifact_max_bytes if inline_max_bytes is None else inline_max_bytes
        )

    def batch_dir(self, batch_id: uuid.UUID) -> Path:
        return self.root / str(batch_id)

    def store(
        self,
        session: Session,
        batch: ImportBatch,
        stream: BinaryIO,
        artifact_type: str,
        artifact_name: str,
        content_type: Optional[str] = "application/json",
    ) -> RawArtifact:
        """
        Persist one uploaded file and its artifact row.

        Args:
            session: Database session
            batch: Owning import batch
            stream: Binary stream positioned at the start of the payload
            artifact_type: Declared export format (selects the parser later)
            artifact_name: Original file name
            content_type: MIME type of the payload

        Returns:
            The flushed RawArtifact
        """
        batch_dir = self.batch_dir(batch.id)
        batch_dir.mkdir(parents=True, exist_ok=True)
        target = batch_dir / f"{uuid.uuid4().hex}_{_safe_file_name(artifact_name)}"

        sha256 = hashlib.sha256()
        byte_length = 0
        with open(target, "wb") as out:
            while chunk := stream.read(CHUNK_SIZE):
                sha256.update(chunk)
                out.write(chunk)
                byte_length += len(chunk)

        raw_json = None
        stored_path: Optional[str] = str(target)
        if 0 < byte_length <= self.inline_max_bytes:
            try:
                raw_json = target.read_bytes().decode("utf-8")
                target.unlink()
                stored_path = None
            except UnicodeDecodeError:
                raw_json = None

        artifact = RawArtifactRepository(session).create(
            import_batch_id=batch.id,
            artifact_type=artifact_type,
            artifact_name=artifact_name,
            content_type=content_type,
            byte_length=byte_length,
            sha256=sha256.hexdigest(),
            raw_json=raw_json,
            stored_path=stored_path,
        )
        batch.artifact_count = (batch.artifact_count or 0) + 1
        session.flush()

        logger.info(
            f"Stored artifact {artifact_name!r} ({byte_length} bytes, "
            f"sha256={artifact.sha256[:12]}..., {'inline' if raw_json is not None else 'file'})"
        )
        return artifact

    def store_file(
        self,
        session: Session,
        batch: ImportBatch,
        file_path: Path,
        artifact_type: str,
    ) -> RawArtifact:
        """Convenience wrapper around store() for a file on disk."""
        with open(file_path, "rb") as f:
            return self.store(session, batch, f, artifact_type, Path(file_path).name)

    def open(self, artifact: RawArtifact) -> BinaryIO:
        """
        Open an artifact's bytes for reading.

        File-backed storage is preferred so large artifacts are streamed.

        Raises:
            ArtifactUnreadableError: If neither a file nor an inline payload exists
        """
        if artifact.stored_path:
            path = Path(artifact.stored_path)
            try:
                return open(path, "rb")
            except OSError as e:
                if artifact.raw_json is None:
                    raise ArtifactUnreadableError(artifact.id, str(e)) from e
                logger.warning(f"Artifact file {path} unreadable, using inline copy: {e}")
        if artifact.raw_json is not None:
            return io.BytesIO(artifact.raw_json.encode("utf-8"))
        raise ArtifactUnreadableError(artifact.id, "no stored file or inline payload")

    def verify(self, artifact: RawArtifact) -> bool:
        """Re-hash the stored bytes and compare with the recorded SHA-256."""
        with self.open(artifact) as stream:
            digest, length = calculate_stream_hash(stream)
        return digest == artifact.sha256 and length == artifact.byte_length

    def delete_batch_files(self, batch_id: uuid.UUID) -> int:
        """
        Remove every stored file of a batch and its directory.

        Returns:
            Number of files deleted
        """
        batch_dir = self.batch_dir(batch_id)
        if not batch_dir.exists():
            return 0
        count = sum(1 for p in batch_dir.iterdir() if p.is_file())
        shutil.rmtree(batch_dir)
        logger.info(f"Deleted {count} artifact file(s) for batch {batch_id}")
        return count
