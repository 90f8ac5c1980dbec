"""
Tests for the streaming export parsers.
"""

import io
import json
import threading
from datetime import UTC, datetime

import pytest

from chatlake.exceptions import ImportCancelledError
from chatlake.parsers.base import ParseFormatError
from chatlake.parsers.chatgpt import ChatGPTExportParser
from chatlake.parsers.claude import ClaudeExportParser
from chatlake.parsers.types import ParseIssueSeverity


def _stream(payload) -> io.BytesIO:
    return io.BytesIO(json.dumps(payload).encode("utf-8"))


class TestChatGPTExportParser:
    """Tests for ChatGPT conversations.json parsing."""

    def test_parses_linear_thread(self, chatgpt_entry):
        entry = chatgpt_entry(
            "conv-1",
            [("user", "Hello there"), ("assistant", "Hi! How can I help?")],
            title="Greeting",
        )

        conversations = list(ChatGPTExportParser().iter_conversations(_stream([entry])))

        assert len(conversations) == 1
        conversation = conversations[0]
        assert conversation.external_id == "conv-1"
        assert conversation.title == "Greeting"
        assert conversation.source_system == "chatgpt"
        assert [(m.role, m.content) for m in conversation.messages] == [
            ("user", "Hello there"),
            ("assistant", "Hi! How can I help?"),
        ]
        assert [m.sequence_index for m in conversation.messages] == [0, 1]
        assert conversation.first_message_at == datetime(2024, 1, 1, tzinfo=UTC)

    def test_follows_current_node_not_abandoned_branch(self, chatgpt_entry):
        """Regenerated answers off the current thread are ignored."""
        entry = chatgpt_entry(
            "conv-branch", [("user", "Question"), ("assistant", "Final answer")]
        )
        entry["mapping"]["abandoned"] = {
            "id": "abandoned",
            "parent": "conv-branch-node-0",
            "children": [],
            "message": {
                "id": "abandoned",
                "author": {"role": "assistant"},
                "content": {"content_type": "text", "parts": ["First draft answer"]},
            },
        }
        entry["mapping"]["conv-branch-node-0"]["children"].append("abandoned")

        conversation = next(ChatGPTExportParser().iter_conversations(_stream([entry])))

        assert [m.content for m in conversation.messages] == ["Question", "Final answer"]

    def test_skips_hidden_and_empty_messages(self, chatgpt_entry):
        entry = chatgpt_entry(
            "conv-hidden", [("system", ""), ("user", "Visible"), ("assistant", "Reply")]
        )
        entry["mapping"]["conv-hidden-node-1"]["message"]["metadata"] = {
            "is_visually_hidden_from_conversation": True
        }

        conversation = next(ChatGPTExportParser().iter_conversations(_stream([entry])))

        assert [m.content for m in conversation.messages] == ["Reply"]
        assert conversation.messages[0].sequence_index == 0

    def test_malformed_entries_are_skipped_and_reported(self, chatgpt_entry):
        good = chatgpt_entry("conv-ok", [("user", "Fine")])
        no_mapping = {"id": "conv-broken", "title": "Broken"}
        issues = []

        parser = ChatGPTExportParser()
        conversations = list(
            parser.iter_conversations(_stream([no_mapping, "not-an-object", good]), on_issue=issues.append)
        )

        assert [c.external_id for c in conversations] == ["conv-ok"]
        assert len(issues) == 2
        assert all(i.severity == ParseIssueSeverity.WARNING for i in issues)
        assert issues[0].external_id == "conv-broken"
        assert issues[0].entry_index == 0
        assert parser.last_stats.entries_seen == 3
        assert parser.last_stats.conversations_yielded == 1
        assert parser.last_stats.warning_count == 2

    def test_non_array_export_raises(self):
        with pytest.raises(ParseFormatError, match="JSON array"):
            list(ChatGPTExportParser().iter_conversations(_stream({"conversations": []})))

    def test_empty_export_raises(self):
        with pytest.raises(ParseFormatError, match="empty"):
            list(ChatGPTExportParser().iter_conversations(io.BytesIO(b"   \n")))

    def test_empty_array_yields_nothing(self):
        assert list(ChatGPTExportParser().iter_conversations(io.BytesIO(b"[]"))) == []

    def test_byte_order_mark_is_accepted(self, chatgpt_entry):
        entry = chatgpt_entry("conv-bom", [("user", "Hi")])
        data = b"\xef\xbb\xbf" + json.dumps([entry]).encode("utf-8")

        conversations = list(ChatGPTExportParser().iter_conversations(io.BytesIO(data)))

        assert len(conversations) == 1

    def test_truncated_json_raises(self, chatgpt_entry):
        entry = chatgpt_entry("conv-first", [("user", "Hi")])
        data = json.dumps([entry]).encode("utf-8")[:-1] + b', {"id": '

        with pytest.raises(ParseFormatError, match="Malformed JSON"):
            list(ChatGPTExportParser().iter_conversations(io.BytesIO(data)))

    def test_cancellation_between_conversations(self, chatgpt_entry):
        entries = [
            chatgpt_entry(f"conv-{i}", [("user", f"Message {i}")]) for i in range(3)
        ]
        cancel = threading.Event()
        parsed = []

        with pytest.raises(ImportCancelledError):
            for conversation in ChatGPTExportParser().iter_conversations(
                _stream(entries), cancel_event=cancel
            ):
                parsed.append(conversation)
                cancel.set()

        assert len(parsed) == 1


class TestClaudeExportParser:
    """Tests for Claude conversations.json parsing."""

    def test_parses_chat_messages(self):
        entry = {
            "uuid": "claude-1",
            "name": "Trip planning",
            "chat_messages": [
                {"sender": "human", "text": "Plan a trip", "created_at": "2024-03-01T10:00:00Z"},
                {
                    "sender": "assistant",
                    "text": "",
                    "content": [{"type": "text", "text": "Sure, where to?"}],
                    "created_at": "2024-03-01T10:00:05Z",
                },
            ],
        }

        conversation = next(ClaudeExportParser().iter_conversations(_stream([entry])))

        assert conversation.external_id == "claude-1"
        assert conversation.title == "Trip planning"
        assert conversation.source_system == "claude"
        assert [(m.role, m.content) for m in conversation.messages] == [
            ("user", "Plan a trip"),
            ("assistant", "Sure, where to?"),
        ]
        assert conversation.last_message_at == datetime(2024, 3, 1, 10, 0, 5, tzinfo=UTC)

    def test_entry_without_messages_is_skipped(self):
        issues = []
        entries = [
            {"uuid": "empty", "chat_messages": []},
            {"uuid": "ok", "chat_messages": [{"sender": "human", "text": "Hi"}]},
        ]

        conversations = list(
            ClaudeExportParser().iter_conversations(_stream(entries), on_issue=issues.append)
        )

        assert [c.external_id for c in conversations] == ["ok"]
        assert issues[0].external_id == "empty"

    def test_invalid_timestamp_becomes_none(self):
        entry = {
            "uuid": "claude-ts",
            "chat_messages": [{"sender": "human", "text": "Hi", "created_at": "yesterday"}],
        }

        conversation = next(ClaudeExportParser().iter_conversations(_stream([entry])))

        assert conversation.messages[0].timestamp is None
        assert conversation.first_message_at is None

    def test_same_turns_give_same_key_across_sources(self, chatgpt_entry):
        """The conversation key ignores ids, titles and timestamps."""
        claude = {
            "uuid": "a",
            "chat_messages": [
                {"sender": "human", "text": "Hi"},
                {"sender": "assistant", "text": "Hello"},
            ],
        }
        chatgpt = chatgpt_entry("b", [("user", "Hi"), ("assistant", "Hello")])

        claude_conv = next(ClaudeExportParser().iter_conversations(_stream([claude])))
        chatgpt_conv = next(ChatGPTExportParser().iter_conversations(_stream([chatgpt])))

        assert claude_conv.conversation_key == chatgpt_conv.conversation_key
