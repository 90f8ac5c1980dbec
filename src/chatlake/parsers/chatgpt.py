"""
ChatGPT export parser.

A ChatGPT ``conversations.json`` is an array of conversation objects. Each
one stores its messages as a tree in ``mapping`` (node id -> node with
``parent``, ``children`` and ``message``). The visible thread is the path
from ``current_node`` back to the root; abandoned branches (regenerated
answers, edited prompts) are not part of it.
"""

from typing import Any, Optional

from chatlake.models.parsed import ParsedConversation, ParsedMessage
from chatlake.parsers.base import ParseDataError
from chatlake.parsers.streaming import JsonArrayExportParser
from chatlake.utils.dates import from_unix_seconds


def _message_text(content: Any) -> str:
    """Join the string parts of a message content object."""
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if isinstance(parts, list):
        return "\n".join(p for p in parts if isinstance(p, str)).strip()
    text = content.get("text")
    if isinstance(text, str):
        return text.strip()
    return ""


def _is_hidden(message: dict) -> bool:
    metadata = message.get("metadata")
    if not isinstance(metadata, dict):
        return False
    return bool(
        metadata.get("is_visually_hidden_from_conversation")
        or metadata.get("is_user_system_message")
    )


def _walk_current_thread(mapping: dict, current_node: str) -> list[dict]:
    """Nodes from the root down to current_node. Cycles and dangling parents end the walk."""
    chain: list[dict] = []
    visited: set[str] = set()
    node_id: Optional[str] = current_node
    while node_id and node_id not in visited:
        visited.add(node_id)
        node = mapping.get(node_id)
        if not isinstance(node, dict):
            break
        chain.append(node)
        parent = node.get("parent")
        node_id = str(parent) if parent else None
    chain.reverse()
    return chain


class ChatGPTExportParser(JsonArrayExportParser):
    """Streaming parser for ChatGPT conversations.json exports."""

    artifact_type = "chatgpt"
    source_system = "chatgpt"
    version = "1.0.0"

    def parse_entry(self, entry: Any) -> ParsedConversation:
        if not isinstance(entry, dict):
            raise ParseDataError("Conversation entry is not a JSON object")

        external_id = entry.get("conversation_id") or entry.get("id")
        if not external_id:
            raise ParseDataError("Conversation entry has no id")

        mapping = entry.get("mapping")
        if not isinstance(mapping, dict) or not mapping:
            raise ParseDataError(f"Conversation {external_id} has no message mapping")

        current_node = entry.get("current_node")
        if not current_node:
            raise ParseDataError(f"Conversation {external_id} has no current_node")

        messages: list[ParsedMessage] = []
        for node in _walk_current_thread(mapping, str(current_node)):
            message = node.get("message")
            if not isinstance(message, dict) or _is_hidden(message):
                continue
            author = message.get("author")
            role = author.get("role") if isinstance(author, dict) else None
            if not role:
                continue
            content = _message_text(message.get("content"))
            if not content:
                continue
            messages.append(
                ParsedMessage(
                    role=str(role),
                    content=content,
                    sequence_index=len(messages),
                    timestamp=from_unix_seconds(message.get("create_time")),
                )
            )

        if not messages:
            raise ParseDataError(f"Conversation {external_id} has no messages")

        title = entry.get("title")
        return ParsedConversation(
            source_system=self.source_system,
            messages=messages,
            external_id=str(external_id),
            title=str(title) if title else None,
        )
