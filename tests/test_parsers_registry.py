"""Tests for the parser registry."""

import pytest

from chatlake.exceptions import UnknownArtifactTypeError
from chatlake.parsers.chatgpt import ChatGPTExportParser
from chatlake.parsers.claude import ClaudeExportParser
from chatlake.parsers.registry import ParserRegistry, get_default_registry


class TestParserRegistry:
    """Tests for ParserRegistry."""

    def test_register_and_get(self):
        registry = ParserRegistry()
        parser = ChatGPTExportParser()
        registry.register(parser)

        assert registry.get("chatgpt") is parser

    def test_lookup_is_case_insensitive(self):
        registry = ParserRegistry()
        registry.register(ClaudeExportParser())

        assert registry.supports("Claude")
        assert isinstance(registry.get("CLAUDE"), ClaudeExportParser)

    def test_unknown_type_raises(self):
        registry = ParserRegistry()

        with pytest.raises(UnknownArtifactTypeError) as exc_info:
            registry.get("gemini")

        assert exc_info.value.artifact_type == "gemini"

    def test_register_replaces_existing(self):
        registry = ParserRegistry()
        first = ChatGPTExportParser()
        second = ChatGPTExportParser()
        registry.register(first)
        registry.register(second)

        assert registry.get("chatgpt") is second
        assert registry.artifact_types == ["chatgpt"]


class TestDefaultRegistry:
    """Tests for the built-in registry singleton."""

    def test_has_builtin_parsers(self):
        assert get_default_registry().artifact_types == ["chatgpt", "claude"]

    def test_is_singleton(self):
        assert get_default_registry() is get_default_registry()
