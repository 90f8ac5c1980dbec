"""Hashing utilities for content identity and reproducibility keys."""

import hashlib
import json
from pathlib import Path
from typing import BinaryIO, Iterable

# Separators between fields/records of the conversation key preimage.
# ASCII unit/record separators never appear in normal chat text.
_FIELD_SEP = b"\x1f"
_RECORD_SEP = b"\x1e"


def calculate_file_hash(file_path: Path | str, chunk_size: int = 8192) -> str:
    """
    Calculate SHA-256 hash of a file.

    Args:
        file_path: Path to the file to hash
        chunk_size: Size of chunks to read (default: 8KB)

    Returns:
        Hexadecimal string representation of the SHA-256 hash (64 characters)

    Raises:
        FileNotFoundError: If the file does not exist
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    if not file_path.is_file():
        raise ValueError(f"Not a file: {file_path}")

    with open(file_path, "rb") as f:
        digest, _ = calculate_stream_hash(f, chunk_size=chunk_size)
    return digest


def calculate_stream_hash(stream: BinaryIO, chunk_size: int = 65536) -> tuple[str, int]:
    """
    Hash a binary stream in chunks.

    Returns:
        Tuple of (hex SHA-256, number of bytes read)
    """
    sha256_hash = hashlib.sha256()
    total = 0
    while chunk := stream.read(chunk_size):
        sha256_hash.update(chunk)
        total += len(chunk)
    return sha256_hash.hexdigest(), total


def calculate_content_hash(content: str | bytes) -> str:
    """
    Calculate SHA-256 hash of content.

    Args:
        content: String or bytes content to hash

    Returns:
        Hexadecimal string representation of the SHA-256 hash (64 characters)
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    return hashlib.sha256(content).hexdigest()


def calculate_conversation_key(messages: Iterable[tuple[str, str]]) -> str:
    """
    Compute the canonical identity of a conversation.

    The key depends only on the ordered (role, content) pairs, never on
    source-supplied ids or timestamps, so byte-identical message sequences
    from different exports map to the same conversation.

    Args:
        messages: Ordered (role, content) pairs

    Returns:
        Hex SHA-256 conversation key
    """
    sha256_hash = hashlib.sha256()
    for role, content in messages:
        sha256_hash.update(role.encode("utf-8"))
        sha256_hash.update(_FIELD_SEP)
        sha256_hash.update(content.encode("utf-8"))
        sha256_hash.update(_RECORD_SEP)
    return sha256_hash.hexdigest()


def calculate_config_hash(config: dict) -> str:
    """
    Hash a configuration mapping for InferenceRun reproducibility.

    Keys are sorted so logically equal configs hash the same regardless of
    insertion order.
    """
    canonical = json.dumps(config, sort_keys=True, separators=(",", ":"), default=str)
    return calculate_content_hash(canonical)
