"""Embedding cache — content-hash deduplication in front of the provider.

For a batch of chunk texts:
1. Hash each text (SHA-256) and look the hashes up in ``embedding_cache``.
2. Send only the distinct misses to the provider, in one call.
3. Return a serialized vector (or None) per input text, plus the new cache
   entries. The caller persists those in the same transaction as the chunks.

Provider failure, unavailability, a count mismatch or a wrong-width vector
leaves the affected texts at None: those chunks are indexed lexical-only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from chatindex.db.models import CachedEmbedding
from chatindex.db.repository import Repository, now_ms
from chatindex.db.vectors import serialize_vector
from chatindex.ingest.hashing import text_hash
from chatindex.providers.embedding import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass
class ResolvedEmbeddings:
    """Vectors aligned with the input texts, plus cache entries to write."""

    vectors: list[bytes | None]
    new_entries: list[CachedEmbedding] = field(default_factory=list)
    hits: int = 0
    misses: int = 0


class EmbeddingCache:
    """Resolve chunk texts to vectors, calling the provider only on cache misses.

    Args:
        repo:     Open Repository instance (read side of the cache).
        provider: Embedding provider used for misses.
    """

    def __init__(self, repo: Repository, provider: EmbeddingProvider) -> None:
        self._repo = repo
        self._provider = provider

    async def resolve(self, texts: list[str]) -> ResolvedEmbeddings:
        hashes = [text_hash(t) for t in texts]
        cached = self._repo.get_cached_embeddings(hashes, provider=self._provider.name)

        # Distinct misses, in first-seen order.
        pending: dict[str, str] = {}
        for h, t in zip(hashes, texts):
            if h not in cached and h not in pending:
                pending[h] = t

        fresh = await self._embed_misses(pending) if pending else {}

        vectors = [cached.get(h) or fresh.get(h) for h in hashes]
        created = now_ms()
        new_entries = [
            CachedEmbedding(
                text_hash=h,
                embedding=blob,
                provider=self._provider.name,
                created_at=created,
            )
            for h, blob in fresh.items()
        ]
        return ResolvedEmbeddings(
            vectors=vectors,
            new_entries=new_entries,
            hits=sum(1 for h in hashes if h in cached),
            misses=len(pending),
        )

    async def _embed_misses(self, pending: dict[str, str]) -> dict[str, bytes]:
        """Embed *pending* {hash: text}. Returns {hash: blob} for the successes."""
        if not self._provider.is_available():
            logger.debug("Embedding provider unavailable; %d chunks stay lexical-only", len(pending))
            return {}
        try:
            embeddings = await self._provider.embed(list(pending.values()))
        except Exception as exc:
            # Non-fatal: the affected chunks are indexed without vectors.
            logger.error("Embedding failed for %d chunks: %s", len(pending), exc)
            return {}

        if len(embeddings) != len(pending):
            logger.warning(
                "Embedding count mismatch: %d vs %d; discarding batch",
                len(embeddings),
                len(pending),
            )
            return {}

        result: dict[str, bytes] = {}
        for h, embedding in zip(pending, embeddings):
            if len(embedding) != self._provider.dimensions:
                logger.warning(
                    "Embedding has %d dimensions, expected %d; skipping",
                    len(embedding),
                    self._provider.dimensions,
                )
                continue
            result[h] = serialize_vector(embedding)
        return result
