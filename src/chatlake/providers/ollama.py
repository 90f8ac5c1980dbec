"""Ollama provider implementation (local HTTP API)."""

import logging
import time
from typing import Optional

import httpx
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from chatlake.providers.base import LLMResponse, ModelProvider

logger = logging.getLogger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    """Timeouts, connection errors and 5xx responses are worth another try."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


class OllamaProvider(ModelProvider):
    """Provider backed by a local Ollama server.

    Uses /api/embeddings for vectors, /api/generate for text and /api/tags
    for the availability check.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.2",
        embedding_model: str = "nomic-embed-text",
        timeout_seconds: float = 120.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        client: Optional[httpx.Client] = None,
    ):
        self._model = model
        self._embedding_model = embedding_model
        self._max_retries = max(1, max_retries)
        self._backoff_seconds = backoff_seconds
        self._http = client or httpx.Client(
            base_url=base_url.rstrip("/"), timeout=timeout_seconds
        )
        logger.info(
            f"Initialized Ollama provider at {base_url} "
            f"(model={model}, embedding_model={embedding_model})"
        )

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def embedding_model_name(self) -> str:
        return self._embedding_model

    def close(self) -> None:
        self._http.close()

    def _post(self, path: str, payload: dict) -> dict:
        retryer = Retrying(
            retry=retry_if_exception(_is_retryable),
            wait=wait_exponential(
                multiplier=self._backoff_seconds,
                min=self._backoff_seconds,
                max=self._backoff_seconds * 8,
            ),
            stop=stop_after_attempt(self._max_retries),
            reraise=True,
        )
        response: Optional[httpx.Response] = None
        for attempt in retryer:
            with attempt:
                response = self._http.post(path, json=payload)
                response.raise_for_status()
        if response is None:
            raise ValueError(f"Ollama {path} response missing after retries")
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"Unexpected Ollama {path} response type: {type(body).__name__}")
        return body

    def _embed(self, text: str) -> list[float]:
        body = self._post(
            "/api/embeddings", {"model": self._embedding_model, "prompt": text}
        )
        embedding = body.get("embedding")
        if not isinstance(embedding, list):
            raise ValueError("Ollama embeddings response missing list field 'embedding'")
        return embedding

    def _complete(self, prompt: str, temperature: float, max_tokens: int) -> LLMResponse:
        start_time = time.time()
        body = self._post(
            "/api/generate",
            {
                "model": self._model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
        )
        return LLMResponse(
            content=str(body.get("response") or ""),
            model=str(body.get("model") or self._model),
            duration_ms=(time.time() - start_time) * 1000,
            raw_response=body,
        )

    def _available(self) -> bool:
        response = self._http.get("/api/tags")
        response.raise_for_status()
        models = response.json().get("models") or []
        names = {str(m.get("name", "")) for m in models if isinstance(m, dict)}
        # Ollama reports "nomic-embed-text:latest" for a bare "nomic-embed-text"
        wanted = self._embedding_model
        found = wanted in names or any(n.split(":")[0] == wanted for n in names)
        if not found:
            logger.warning(f"Ollama is reachable but model '{wanted}' is not pulled")
        return found
