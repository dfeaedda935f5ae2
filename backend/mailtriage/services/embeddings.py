"""Embedding provider — turns normalized text into model-tagged vectors."""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from mailtriage.config import Settings
from mailtriage.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    vector: list[float]
    model: str


# Transport failures, bad JSON (ValueError) and malformed payloads are all retried
RETRYABLE_ERRORS = (httpx.HTTPError, UpstreamError, ValueError)


def _json_object(response: httpx.Response) -> dict:
    payload = response.json()
    if not isinstance(payload, dict):
        raise UpstreamError(f"Expected a JSON object from {response.url}, got {type(payload).__name__}")
    return payload


def coerce_vector(raw, model_tag: Optional[str]) -> list[float]:
    """Validate a provider vector: a non-empty list of finite numbers."""
    if not isinstance(raw, (list, tuple)) or not raw:
        raise UpstreamError(f"{model_tag} returned an empty or malformed embedding")
    try:
        vector = [float(v) for v in raw]
    except (TypeError, ValueError) as e:
        raise UpstreamError(f"{model_tag} returned a non-numeric embedding: {e}") from e
    if not all(math.isfinite(v) for v in vector):
        raise UpstreamError(f"{model_tag} returned a non-finite embedding")
    return vector


class OllamaEmbeddingBackend:
    """Local embeddings via Ollama's /api/embeddings."""

    name = "ollama"

    def __init__(self, client: httpx.AsyncClient, base_url: str, model: str):
        self._client = client
        self._base_url = base_url
        self.model = model

    async def embed(self, text: str) -> list[float]:
        response = await self._client.post(
            f"{self._base_url}/api/embeddings",
            json={"model": self.model, "prompt": text},
        )
        response.raise_for_status()
        return _json_object(response).get("embedding")


class GeminiEmbeddingBackend:
    """Hosted embeddings via the Gemini embedContent endpoint."""

    name = "gemini"

    def __init__(self, client: httpx.AsyncClient, base_url: str, model: str, api_key: str):
        self._client = client
        self._base_url = base_url
        self._api_key = api_key
        self.model = model

    async def embed(self, text: str) -> list[float]:
        response = await self._client.post(
            f"{self._base_url}/models/{self.model}:embedContent",
            params={"key": self._api_key},
            json={"content": {"parts": [{"text": text}]}},
        )
        response.raise_for_status()
        embedding = _json_object(response).get("embedding")
        return embedding.get("values") if isinstance(embedding, dict) else None


class EmbeddingProvider:
    """Selectable embedding backend. With no backend, embeddings are disabled and embed() returns None."""

    def __init__(self, backend=None, max_chars: int = 2000, retries: int = 3, backoff: float = 0.5):
        self._backend = backend
        self._max_chars = max_chars
        self._retries = max(1, retries)
        self._backoff = backoff

    @property
    def enabled(self) -> bool:
        return self._backend is not None

    @property
    def model_tag(self) -> Optional[str]:
        if self._backend is None:
            return None
        return f"{self._backend.name}/{self._backend.model}"

    async def embed(self, text: Optional[str]) -> Optional[EmbeddingResult]:
        """Embed text, or return None when disabled or there is nothing to embed."""
        if self._backend is None:
            return None
        text = (text or "").strip()
        if not text:
            return None
        text = text[:self._max_chars]

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retries),
                wait=wait_exponential(multiplier=self._backoff, max=10),
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    vector = coerce_vector(await self._backend.embed(text), self.model_tag)
        except RETRYABLE_ERRORS as e:
            logger.warning(f"Embedding with {self.model_tag} failed: {e}")
            raise UpstreamError(f"Embedding failed after {self._retries} attempts: {e}") from e

        return EmbeddingResult(vector=vector, model=self.model_tag)

    def _log_retry(self, retry_state: RetryCallState):
        logger.warning(
            f"Embedding attempt {retry_state.attempt_number}/{self._retries} failed: "
            f"{retry_state.outcome.exception()}"
        )


def build_embedding_provider(settings: Settings, client: httpx.AsyncClient) -> EmbeddingProvider:
    provider = settings.embedding_provider.strip().lower()
    if provider == "ollama":
        backend = OllamaEmbeddingBackend(client, settings.ollama_url, settings.ollama_embedding_model)
    elif provider == "gemini":
        backend = GeminiEmbeddingBackend(
            client, settings.gemini_url, settings.gemini_embedding_model, settings.gemini_api_key
        )
    else:
        logger.info("Embeddings disabled — similarity features will be skipped")
        backend = None
    return EmbeddingProvider(
        backend,
        max_chars=settings.embedding_max_chars,
        retries=settings.embedding_retries,
    )
