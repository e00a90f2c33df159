"""Embedding provider contract and the LiteLLM-backed implementation.

All embedding calls in the index/search pipeline route through an
EmbeddingProvider. LiteLLM's built-in retry is used (num_retries, exponential
backoff). Availability is decided up front from the provider's API key env var
so a missing key degrades to lexical-only search instead of failing per call.
"""

from __future__ import annotations

import os
from typing import Protocol, runtime_checkable

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

DEFAULT_EMBEDDING_MODEL = "openai/text-embedding-3-small"
DEFAULT_DIMENSIONS = 1536


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "huggingface": None,
}


@runtime_checkable
class EmbeddingProvider(Protocol):
    """What the index needs from an embedding service."""

    @property
    def name(self) -> str: ...

    @property
    def dimensions(self) -> int: ...

    def is_available(self) -> bool: ...

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


def required_api_key_env(model: str) -> str | None:
    """Return the env var holding the API key for *model*, or None if keyless."""
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


class LiteLLMEmbeddingProvider:
    """Embed text batches with ``litellm.aembedding()``.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Width of the vectors *model* returns.
        num_retries: Retries on transient errors (exponential backoff).
    """

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int = DEFAULT_DIMENSIONS,
        num_retries: int = 3,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        self._num_retries = num_retries

    @property
    def name(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def is_available(self) -> bool:
        env_var = required_api_key_env(self._model)
        return env_var is None or bool(os.getenv(env_var))

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order.

        Raises:
            litellm.exceptions.APIError: On persistent API failure after retries.
        """
        if not texts:
            return []
        response = await litellm.aembedding(
            model=self._model,
            input=texts,
            num_retries=self._num_retries,
        )
        return [d["embedding"] for d in response.data]
