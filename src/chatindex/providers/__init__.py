"""External collaborators: embedding service and host session data."""

from chatindex.providers.embedding import EmbeddingProvider, LiteLLMEmbeddingProvider
from chatindex.providers.sessions import (
    HttpSessionProvider,
    SessionDataProvider,
    SessionDescriptor,
    SessionProviderError,
)

__all__ = [
    "EmbeddingProvider",
    "LiteLLMEmbeddingProvider",
    "HttpSessionProvider",
    "SessionDataProvider",
    "SessionDescriptor",
    "SessionProviderError",
]
