"""Base protocol and types for model providers."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Standardized text generation response from a provider.

    Attributes:
        content: The generated text
        model: The model that produced it (may differ from requested)
        duration_ms: Time taken for the call in milliseconds
        raw_response: Provider-specific raw response for debugging
    """

    content: str
    model: str
    duration_ms: float
    raw_response: Any = None


def truncate_for_embedding(text: str, max_chars: int = 3000) -> str:
    """
    Trim text to fit an embedding model's context.

    Cuts at the last word boundary when it lies past the halfway point and
    appends "..." to mark the cut.
    """
    if len(text) <= max_chars:
        return text
    truncated = text[:max_chars]
    last_space = truncated.rfind(" ")
    if last_space > max_chars // 2:
        truncated = truncated[:last_space]
    return truncated + "..."


class ModelProvider(ABC):
    """Abstract base class for embedding and text generation providers.

    Implementations supply the raw calls (_embed, _complete, _available).
    The public wrappers never raise: failures are logged and reported as
    None/False so callers can isolate the failing unit.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier (e.g., 'ollama', 'openai')."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the text generation model identifier."""
        ...

    @property
    @abstractmethod
    def embedding_model_name(self) -> str:
        """Return the embedding model identifier."""
        ...

    @abstractmethod
    def _embed(self, text: str) -> list[float]:
        ...

    @abstractmethod
    def _complete(self, prompt: str, temperature: float, max_tokens: int) -> LLMResponse:
        ...

    @abstractmethod
    def _available(self) -> bool:
        ...

    def embed(self, text: str) -> Optional[list[float]]:
        """Embed text, or return None if the provider call fails."""
        if not text or not text.strip():
            return None
        try:
            vector = self._embed(text)
        except Exception as e:
            logger.warning(f"{self.provider_name} embedding failed: {e}")
            return None
        if not vector:
            logger.warning(f"{self.provider_name} returned an empty embedding")
            return None
        return [float(v) for v in vector]

    def generate_text(
        self, prompt: str, temperature: float = 0.3, max_tokens: int = 200
    ) -> Optional[str]:
        """Generate a completion, or return None if the provider call fails."""
        start_time = time.time()
        try:
            response = self._complete(prompt, temperature, max_tokens)
        except Exception as e:
            logger.warning(f"{self.provider_name} generation failed: {e}")
            return None
        logger.debug(
            f"{self.provider_name} generated {len(response.content)} chars "
            f"with {response.model} in {(time.time() - start_time) * 1000:.0f}ms"
        )
        return response.content.strip() or None

    def is_available(self) -> bool:
        try:
            return self._available()
        except Exception as e:
            logger.warning(f"{self.provider_name} availability check failed: {e}")
            return False
