"""
Parser registry keyed by declared artifact type.

Exports are not sniffed: the uploader declares what kind of export a file is,
and the registry returns the matching parser variant.
"""

import logging
from typing import Optional

from chatlake.exceptions import UnknownArtifactTypeError
from chatlake.parsers.base import ExportParser

logger = logging.getLogger(__name__)


class ParserRegistry:
    """
    Registry of export parser variants.

    Example:
        >>> registry = ParserRegistry()
        >>> registry.register(ChatGPTExportParser())
        >>> parser = registry.get("chatgpt")
    """

    def __init__(self) -> None:
        self._parsers: dict[str, ExportParser] = {}

    def register(self, parser: ExportParser) -> None:
        """
        Register a parser under its artifact type.

        Registering a second parser for the same type replaces the first.
        """
        key = parser.artifact_type.lower()
        if key in self._parsers:
            logger.warning(f"Replacing parser for artifact type '{key}'")
        self._parsers[key] = parser
        logger.debug(f"Registered parser {type(parser).__name__} for '{key}'")

    def get(self, artifact_type: str) -> ExportParser:
        """
        Get the parser for an artifact type.

        Raises:
            UnknownArtifactTypeError: If no parser handles the type
        """
        parser = self._parsers.get(artifact_type.lower())
        if parser is None:
            raise UnknownArtifactTypeError(artifact_type)
        return parser

    def supports(self, artifact_type: str) -> bool:
        return artifact_type.lower() in self._parsers

    @property
    def artifact_types(self) -> list[str]:
        return sorted(self._parsers)


_default_registry: Optional[ParserRegistry] = None


def get_default_registry() -> ParserRegistry:
    """
    Get the default global parser registry with all built-in parsers.

    Note:
        This is a singleton. Multiple calls return the same instance.
    """
    global _default_registry

    if _default_registry is None:
        from chatlake.parsers.chatgpt import ChatGPTExportParser
        from chatlake.parsers.claude import ClaudeExportParser

        _default_registry = ParserRegistry()
        _default_registry.register(ChatGPTExportParser())
        _default_registry.register(ClaudeExportParser())
        logger.debug("Initialized default parser registry")

    return _default_registry
