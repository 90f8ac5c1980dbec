"""
Parsed conversation data models.

These are intermediate Python dataclasses representing parsed conversations
before they are stored in the database. Used by parsers and the ingestion pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from chatlake.utils.hashing import calculate_content_hash, calculate_conversation_key


@dataclass
class ParsedMessage:
    """A single turn as it appeared in the export."""

    role: str
    content: str
    sequence_index: int
    timestamp: Optional[datetime] = None

    @property
    def content_hash(self) -> str:
        return calculate_content_hash(self.content)


@dataclass
class ParsedConversation:
    """A conversation as read from one export entry."""

    source_system: str
    messages: list[ParsedMessage] = field(default_factory=list)
    external_id: Optional[str] = None
    title: Optional[str] = None

    @property
    def conversation_key(self) -> str:
        return calculate_conversation_key((m.role, m.content) for m in self.messages)

    @property
    def first_message_at(self) -> Optional[datetime]:
        stamps = [m.timestamp for m in self.messages if m.timestamp is not None]
        return min(stamps) if stamps else None

    @property
    def last_message_at(self) -> Optional[datetime]:
        stamps = [m.timestamp for m in self.messages if m.timestamp is not None]
        return max(stamps) if stamps else None

    @property
    def message_count(self) -> int:
        return len(self.messages)
