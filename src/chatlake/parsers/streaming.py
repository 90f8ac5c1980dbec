"""
Streaming support for exports shaped as one top-level JSON array.

ijson yields array items one at a time, so memory is bounded by the size of
the largest single conversation rather than the size of the file.
"""

import logging
import threading
from typing import Any, BinaryIO, Iterator, Optional

import ijson

from chatlake.exceptions import ImportCancelledError
from chatlake.models.parsed import ParsedConversation
from chatlake.parsers.base import IssueCallback, ParseDataError, ParseFormatError
from chatlake.parsers.types import ParseIssue, ParseIssueSeverity, ParseStats

logger = logging.getLogger(__name__)

_BOM = b"\xef\xbb\xbf"
_WHITESPACE = b" \t\r\n"


class _PrefixedStream:
    """Replays bytes already read for format sniffing, then continues the stream."""

    def __init__(self, prefix: bytes, stream: BinaryIO):
        self._prefix = prefix
        self._stream = stream

    def read(self, size: int = -1) -> bytes:
        if self._prefix:
            if size is None or size < 0:
                data = self._prefix + self._stream.read()
                self._prefix = b""
                return data
            data, self._prefix = self._prefix[:size], self._prefix[size:]
            if len(data) < size:
                data += self._stream.read(size - len(data))
            return data
        return self._stream.read(size)


def _sniff_array(stream: BinaryIO) -> BinaryIO:
    """
    Check that the export starts with a JSON array.

    Raises:
        ParseFormatError: If the first significant byte is not '['
    """
    prefix = b""
    while True:
        chunk = stream.read(64)
        if not chunk:
            break
        prefix += chunk
        significant = prefix.removeprefix(_BOM).lstrip(_WHITESPACE)
        if significant:
            if not significant.startswith(b"["):
                raise ParseFormatError("Export must be a JSON array of conversations")
            return _PrefixedStream(prefix.removeprefix(_BOM), stream)
    raise ParseFormatError("Export is empty")


def _external_id_hint(entry: Any) -> Optional[str]:
    if isinstance(entry, dict):
        for key in ("conversation_id", "id", "uuid"):
            value = entry.get(key)
            if value:
                return str(value)
    return None


class JsonArrayExportParser:
    """
    Base class for export variants stored as a JSON array of conversation objects.

    Subclasses set artifact_type/source_system/version and implement
    parse_entry() for a single array item.
    """

    artifact_type: str = ""
    source_system: str = ""
    version: str = "1.0.0"

    def __init__(self) -> None:
        self.last_stats = ParseStats()

    def parse_entry(self, entry: Any) -> ParsedConversation:
        """
        Convert one array item into a ParsedConversation.

        Raises:
            ParseDataError: If the entry lacks required data
        """
        raise NotImplementedError

    def iter_conversations(
        self,
        stream: BinaryIO,
        on_issue: Optional[IssueCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[ParsedConversation]:
        stats = ParseStats()
        self.last_stats = stats

        def report(issue: ParseIssue) -> None:
            stats.add_issue(issue)
            if on_issue is not None:
                on_issue(issue)

        items = ijson.items(_sniff_array(stream), "item")
        index = -1
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise ImportCancelledError(
                    f"Parsing cancelled after {stats.conversations_yielded} conversation(s)"
                )
            try:
                entry = next(items)
            except StopIteration:
                break
            except ijson.JSONError as e:
                report(
                    ParseIssue(
                        severity=ParseIssueSeverity.ERROR,
                        message=f"Malformed JSON after entry {index}: {e}",
                        entry_index=index + 1,
                    )
                )
                raise ParseFormatError(f"Malformed JSON after entry {index}: {e}") from e

            index += 1
            stats.entries_seen += 1
            try:
                conversation = self.parse_entry(entry)
            except ParseDataError as e:
                logger.debug(f"Skipping {self.artifact_type} entry {index}: {e}")
                report(
                    ParseIssue(
                        severity=ParseIssueSeverity.WARNING,
                        message=str(e),
                        entry_index=index,
                        external_id=_external_id_hint(entry),
                    )
                )
                continue

            stats.conversations_yielded += 1
            yield conversation
