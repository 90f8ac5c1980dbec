"""Model providers for embeddings and text generation.

Supported providers:
- Ollama (local; nomic-embed-text embeddings, llama3.2 naming)
- OpenAI (text-embedding-3-small, gpt-4o-mini)

Usage:
    from chatlake.providers import create_provider

    provider = create_provider()  # from settings
    vector = provider.embed("How do I rotate my backups?")
"""

import logging
from typing import Literal, Optional

from chatlake.config import Settings, settings
from chatlake.providers.base import LLMResponse, ModelProvider, truncate_for_embedding

logger = logging.getLogger(__name__)

ProviderType = Literal["ollama", "openai"]


def create_provider(
    provider_type: Optional[ProviderType] = None,
    config: Optional[Settings] = None,
) -> ModelProvider:
    """Factory function to create the configured model provider.

    Args:
        provider_type: "ollama" or "openai" (defaults to settings.llm_provider)
        config: Settings to read endpoints and model names from

    Returns:
        Configured ModelProvider instance

    Raises:
        ValueError: If provider_type is unknown or the OpenAI key is missing
    """
    config = config or settings
    provider_type = provider_type or config.llm_provider  # type: ignore[assignment]

    if provider_type == "ollama":
        from chatlake.providers.ollama import OllamaProvider

        return OllamaProvider(
            base_url=config.ollama_base_url,
            model=config.naming_model,
            embedding_model=config.embedding_model,
            timeout_seconds=config.provider_timeout_seconds,
        )

    elif provider_type == "openai":
        from chatlake.providers.openai_provider import OpenAIProvider

        return OpenAIProvider(
            api_key=config.openai_api_key,
            model=config.openai_model,
            embedding_model=config.openai_embedding_model,
            timeout_seconds=config.provider_timeout_seconds,
        )

    else:
        raise ValueError(
            f"Unknown provider type: {provider_type}. "
            f"Supported providers: ollama, openai"
        )


__all__ = [
    "LLMResponse",
    "ModelProvider",
    "ProviderType",
    "create_provider",
    "truncate_for_embedding",
]
