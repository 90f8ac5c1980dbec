"""
Export parsers for bulk conversation exports.

One streaming parser per export format, selected by artifact type through
the registry.
"""

from chatlake.parsers.base import (
    ExportParser,
    ParseDataError,
    ParseFormatError,
    ParserError,
)
from chatlake.parsers.chatgpt import ChatGPTExportParser
from chatlake.parsers.claude import ClaudeExportParser
from chatlake.parsers.registry import ParserRegistry, get_default_registry
from chatlake.parsers.types import ParseIssue, ParseIssueSeverity, ParseStats

__all__ = [
    "ExportParser",
    "ParserError",
    "ParseFormatError",
    "ParseDataError",
    "ChatGPTExportParser",
    "ClaudeExportParser",
    "ParserRegistry",
    "get_default_registry",
    "ParseIssue",
    "ParseIssueSeverity",
    "ParseStats",
]
