"""
Claude export parser.

Claude data exports contain a ``conversations.json`` array where each
conversation has a ``uuid``, a ``name`` and a flat ``chat_messages`` list of
``{"sender": "human" | "assistant", "text": ..., "created_at": ISO-8601}``.
"""

from datetime import UTC, datetime
from typing import Any, Optional

from chatlake.models.parsed import ParsedConversation, ParsedMessage
from chatlake.parsers.base import ParseDataError
from chatlake.parsers.streaming import JsonArrayExportParser

# Claude calls the user "human"; canonical roles follow the ChatGPT naming
_ROLE_MAP = {"human": "user", "assistant": "assistant"}


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _message_text(row: dict) -> str:
    text = row.get("text")
    if isinstance(text, str) and text.strip():
        return text.strip()
    content = row.get("content")
    if isinstance(content, list):
        chunks = [
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and isinstance(block.get("text"), str)
        ]
        return "\n".join(c for c in chunks if c).strip()
    return ""


class ClaudeExportParser(JsonArrayExportParser):
    """Streaming parser for Claude conversations.json exports."""

    artifact_type = "claude"
    source_system = "claude"
    version = "1.0.0"

    def parse_entry(self, entry: Any) -> ParsedConversation:
        if not isinstance(entry, dict):
            raise ParseDataError("Conversation entry is not a JSON object")

        external_id = entry.get("uuid") or entry.get("id")
        if not external_id:
            raise ParseDataError("Conversation entry has no uuid")

        rows = entry.get("chat_messages")
        if not isinstance(rows, list):
            raise ParseDataError(f"Conversation {external_id} has no chat_messages")

        messages: list[ParsedMessage] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            sender = str(row.get("sender") or row.get("role") or "")
            role = _ROLE_MAP.get(sender, sender)
            content = _message_text(row)
            if not role or not content:
                continue
            messages.append(
                ParsedMessage(
                    role=role,
                    content=content,
                    sequence_index=len(messages),
                    timestamp=_parse_iso(row.get("created_at")),
                )
            )

        if not messages:
            raise ParseDataError(f"Conversation {external_id} has no messages")

        name = entry.get("name")
        return ParsedConversation(
            source_system=self.source_system,
            messages=messages,
            external_id=str(external_id),
            title=str(name) if name else None,
        )
