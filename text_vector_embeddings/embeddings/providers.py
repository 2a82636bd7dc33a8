"""Embedding providers: Voyage AI over HTTP, or a local sentence-transformers model."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from text_vector_embeddings.config import BotSettings, bot_settings


class EmbeddingError(Exception):
    """Raised when an embedding provider call fails."""


class EmbeddingRateLimitError(EmbeddingError):
    """Raised when the embedding provider reports rate limiting."""

    status = 429


def is_rate_limit_error(error: BaseException | None) -> bool:
    """True if `error` signals rate limiting (status 429 or a rate-limit message)."""
    if error is None:
        return False
    if isinstance(error, EmbeddingRateLimitError):
        return True
    if isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 429:
        return True
    if getattr(error, "status", None) == 429 or getattr(error, "status_code", None) == 429:
        return True
    message = str(error)
    return "rate limit" in message.lower() or "429" in message


class VoyageEmbedder:
    """Voyage AI embeddings endpoint."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        base_url: str = "",
        timeout_seconds: int = 0,
    ):
        self.api_key = api_key or bot_settings.voyage_api_key
        self.model = model or bot_settings.voyage_model
        self.base_url = (base_url or bot_settings.voyage_api_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or bot_settings.embedding_timeout_seconds

    async def embed(self, text: str, input_type: str = "document") -> list[float]:
        """Embed one text. `input_type` is "document" for stored text, "query" for lookups.

        Raises EmbeddingRateLimitError on HTTP 429 and EmbeddingError on any
        other failure.
        """
        if text is None:
            raise EmbeddingError("Cannot embed empty text")
        if not self.api_key:
            raise EmbeddingError("No API key provided for Voyage embeddings.")

        payload: dict[str, Any] = {
            "input": [text],
            "model": self.model,
            "input_type": input_type,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                resp = await client.post(f"{self.base_url}/embeddings", headers=headers, json=payload)
        except httpx.TimeoutException:
            raise EmbeddingError(f"Embedding request timed out after {self.timeout_seconds}s")
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding request failed: {e}")

        if resp.status_code == 429:
            raise EmbeddingRateLimitError(f"Voyage rate limit hit: {resp.text[:200]}")
        if resp.status_code != 200:
            raise EmbeddingError(f"Voyage API returned {resp.status_code}: {resp.text[:500]}")

        try:
            return resp.json()["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise EmbeddingError(f"Unexpected response structure: {e}")


class LocalEmbedder:
    """sentence-transformers model, loaded on first use. Requires the `local` extra."""

    def __init__(self, model_name: str = ""):
        self.model_name = model_name or bot_settings.local_embedding_model
        self._model = None

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading local embedding model {}", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    async def embed(self, text: str, input_type: str = "document") -> list[float]:
        if text is None:
            raise EmbeddingError("Cannot embed empty text")
        model = self._get_model()
        embedding = model.encode(text, normalize_embeddings=True)
        return embedding.tolist()


def create_embedder(settings: BotSettings | None = None) -> VoyageEmbedder | LocalEmbedder:
    """Build the embedder selected by `embedding_provider`."""
    settings = settings or bot_settings
    if settings.embedding_provider == "local":
        return LocalEmbedder(model_name=settings.local_embedding_model)
    return VoyageEmbedder(
        api_key=settings.voyage_api_key,
        model=settings.voyage_model,
        base_url=settings.voyage_api_url,
        timeout_seconds=settings.embedding_timeout_seconds,
    )
