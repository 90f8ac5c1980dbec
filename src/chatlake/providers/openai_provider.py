"""OpenAI provider implementation."""

import logging
import time

from openai import OpenAI

from chatlake.providers.base import LLMResponse, ModelProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(ModelProvider):
    """OpenAI provider using the OpenAI Python SDK.

    Embeddings come from the embeddings endpoint, names and summaries from
    chat completions.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        timeout_seconds: float = 120.0,
    ):
        """Initialize the OpenAI provider.

        Args:
            api_key: OpenAI API key
            model: Chat model used for text generation
            embedding_model: Embedding model
            timeout_seconds: Per-request timeout
        """
        if not api_key:
            raise ValueError("OpenAI API key is required")

        self.client = OpenAI(api_key=api_key, timeout=timeout_seconds)
        self._model = model
        self._embedding_model = embedding_model
        logger.info(
            f"Initialized OpenAI provider with model: {model}, embeddings: {embedding_model}"
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def embedding_model_name(self) -> str:
        return self._embedding_model

    def _embed(self, text: str) -> list[float]:
        response = self.client.embeddings.create(model=self._embedding_model, input=text)
        return list(response.data[0].embedding)

    def _complete(self, prompt: str, temperature: float, max_tokens: int) -> LLMResponse:
        start_time = time.time()
        response = self.client.chat.completions.create(
            model=self._model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            duration_ms=(time.time() - start_time) * 1000,
            raw_response=response,
        )

    def _available(self) -> bool:
        self.client.models.retrieve(self._embedding_model)
        return True
