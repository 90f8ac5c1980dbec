"""
Base parser protocol and exception classes for export parsers.

Each export format is one parser variant, selected by the artifact type
declared at upload time. Parsers stream: they yield one conversation at a
time and never hold the whole export in memory.
"""

import threading
from typing import BinaryIO, Callable, Iterator, Optional, Protocol

from chatlake.models.parsed import ParsedConversation
from chatlake.parsers.types import ParseIssue


class ParserError(Exception):
    """Base exception for all parser errors."""

    pass


class ParseFormatError(ParserError):
    """Raised when the export as a whole is not in the expected format."""

    pass


class ParseDataError(ParserError):
    """Raised when a single export entry is missing required data."""

    pass


IssueCallback = Callable[[ParseIssue], None]


class ExportParser(Protocol):
    """
    Protocol for bulk export parsers.

    Attributes:
        artifact_type: Registry key (e.g. "chatgpt")
        source_system: Source tag stored on conversations
        version: Parser version
    """

    artifact_type: str
    source_system: str
    version: str

    def iter_conversations(
        self,
        stream: BinaryIO,
        on_issue: Optional[IssueCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[ParsedConversation]:
        """
        Lazily parse conversations from an export stream.

        Malformed entries are reported through on_issue and skipped.
        Cancellation is checked between conversations only.

        Args:
            stream: Binary stream of the export
            on_issue: Callback receiving per-entry issues
            cancel_event: When set, iteration stops at the next conversation boundary

        Yields:
            ParsedConversation objects in export order

        Raises:
            ParseFormatError: If the stream is not a valid export
            ImportCancelledError: If cancel_event is set
        """
        ...
