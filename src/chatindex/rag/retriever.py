"""Hybrid retriever: BM25 (FTS5) + dense (sqlite-vec), fused by weighted score.

Each channel is oversampled (``candidate_multiplier × limit``), min-max
normalised to [0, 1] within its own candidate set, then combined:

  score(c) = w × vector(c) + (1 − w) × lexical(c)      w = 0.7

A chunk missing from one channel scores 0 there. When the vector channel did
not run (no provider, provider unavailable, no vec index, embedding failure)
the score is the lexical score alone. Results are then reduced to the best
chunk per session so one long transcript cannot crowd out the others.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from chatindex.db.models import Chunk, SessionMetadata
from chatindex.db.repository import Repository
from chatindex.db.vectors import serialize_vector
from chatindex.providers.embedding import EmbeddingProvider
from chatindex.rag.query_cache import ExpiringCache

logger = logging.getLogger(__name__)

_SNIPPET_LEAD_CHARS = 40
_NEWLINES_RE = re.compile(r"\n+")


@dataclass
class RetrieverConfig:
    """Configuration for the hybrid retriever.

    Attributes:
        default_limit: Results returned when the caller gives no limit.
        candidate_multiplier: Oversampling factor per channel before fusion.
        vector_weight: Weight of the vector score; lexical gets the rest.
        snippet_chars: Maximum snippet length (before ellipsis markers).
    """

    default_limit: int = 20
    candidate_multiplier: int = 4
    vector_weight: float = 0.7
    snippet_chars: int = 300


@dataclass
class SearchResult:
    """One session-level hit with its representative snippet.

    Attributes:
        session_key: Key of the session the winning chunk belongs to.
        display_name: Session display name ('' when unknown).
        snippet: Bounded excerpt around the first query term.
        role: Role of the last message in the winning chunk.
        score: Fused relevance score in [0, 1].
        lexical_score: Normalised BM25 score (0 if not a lexical candidate).
        vector_score: Normalised vector score (0 if not a vector candidate).
    """

    session_key: str
    display_name: str
    snippet: str
    role: str | None
    score: float
    lexical_score: float = 0.0
    vector_score: float = 0.0
    chunk_index: int = 0
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    source: str = "chat"


@dataclass
class _Candidate:
    chunk: Chunk
    lexical: float = 0.0
    vector: float = 0.0


class HybridRetriever:
    """Run lexical + vector search over the chat index and fuse the results.

    Args:
        repo:        Open Repository instance.
        provider:    Optional embedding provider for the vector channel.
        config:      Retrieval tuning.
        query_cache: Cache of query embeddings, owned by the caller.
    """

    def __init__(
        self,
        repo: Repository,
        provider: EmbeddingProvider | None = None,
        config: RetrieverConfig | None = None,
        query_cache: ExpiringCache[bytes] | None = None,
    ) -> None:
        self._repo = repo
        self._provider = provider
        self._config = config or RetrieverConfig()
        self._query_cache = query_cache

    @property
    def vector_enabled(self) -> bool:
        return (
            self._repo.has_vec
            and self._provider is not None
            and self._provider.is_available()
        )

    async def search(
        self, query: str, limit: int | None = None, use_vector: bool = True
    ) -> list[SearchResult]:
        """Return up to *limit* session-level results, best-first."""
        if not query or not query.strip():
            return []
        limit = limit or self._config.default_limit
        candidate_limit = limit * self._config.candidate_multiplier

        candidates: dict[int, _Candidate] = {}

        for chunk, score in normalize_lexical(self._lexical(query, candidate_limit)):
            candidates[chunk.id] = _Candidate(chunk=chunk, lexical=score)

        vector_ran = False
        if use_vector and self.vector_enabled:
            vector_hits = await self._vector(query, candidate_limit)
            if vector_hits is not None:
                vector_ran = True
                for chunk, score in normalize_distances(vector_hits):
                    candidates.setdefault(chunk.id, _Candidate(chunk=chunk)).vector = score

        w = self._config.vector_weight
        results = [
            SearchResult(
                session_key=c.chunk.session_key,
                display_name=c.chunk.metadata.display_name,
                snippet=make_snippet(c.chunk.content, query, self._config.snippet_chars),
                role=c.chunk.role,
                score=(w * c.vector + (1 - w) * c.lexical) if vector_ran else c.lexical,
                lexical_score=c.lexical,
                vector_score=c.vector,
                chunk_index=c.chunk.chunk_index,
                metadata=c.chunk.metadata,
            )
            for c in candidates.values()
        ]

        best = dedupe_by_session(results)
        best.sort(key=lambda r: r.score, reverse=True)
        return best[:limit]

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def _lexical(self, query: str, limit: int) -> list[tuple[Chunk, float]]:
        try:
            return self._repo.search_fts(query, limit=limit)
        except Exception as exc:
            logger.error("FTS search failed: %s", exc)
            return []

    async def _vector(self, query: str, limit: int) -> list[tuple[Chunk, float]] | None:
        """Nearest neighbours of the query embedding, or None if the channel failed."""
        try:
            vector = await self._embed_query(query)
            return self._repo.search_vec(vector, limit=limit)
        except Exception as exc:
            logger.error("Vector search failed: %s", exc)
            return None

    async def _embed_query(self, query: str) -> bytes:
        if self._provider is None:
            raise RuntimeError("no embedding provider configured")
        key = f"{self._provider.name}\x00{query}"
        if self._query_cache is not None:
            entry = self._query_cache.get(key)
            if entry is not None and not entry.is_expired():
                return entry.value

        embeddings = await self._provider.embed([query])
        if not embeddings:
            raise RuntimeError("embedding provider returned no vector for the query")
        vector = serialize_vector(embeddings[0])
        if self._query_cache is not None:
            self._query_cache.put(key, vector)
        return vector


# ------------------------------------------------------------------
# Normalisation, dedup, snippets
# ------------------------------------------------------------------


def min_max(values: list[float], higher_is_better: bool) -> list[float]:
    """Rescale *values* to [0, 1] with the best value at 1.0.

    A zero-width range maps every value to 1.0.
    """
    if not values:
        return []
    lo, hi = min(values), max(values)
    span = hi - lo
    if span == 0:
        return [1.0] * len(values)
    if higher_is_better:
        return [(v - lo) / span for v in values]
    return [(hi - v) / span for v in values]


def normalize_lexical(hits: list[tuple[Chunk, float]]) -> list[tuple[Chunk, float]]:
    """FTS5 rank is bm25(): more negative is better."""
    scores = min_max([rank for _, rank in hits], higher_is_better=False)
    return [(chunk, s) for (chunk, _), s in zip(hits, scores)]


def normalize_distances(hits: list[tuple[Chunk, float]]) -> list[tuple[Chunk, float]]:
    """Vector distance: smaller is better."""
    scores = min_max([d for _, d in hits], higher_is_better=False)
    return [(chunk, s) for (chunk, _), s in zip(hits, scores)]


def dedupe_by_session(results: list[SearchResult]) -> list[SearchResult]:
    """Keep only the highest-scoring result per session."""
    best: dict[str, SearchResult] = {}
    for r in results:
        current = best.get(r.session_key)
        if current is None or r.score > current.score:
            best[r.session_key] = r
    return list(best.values())


def make_snippet(text: str, query: str, max_len: int = 300) -> str:
    """Cut a window of *max_len* chars starting shortly before the first query term.

    ``...`` marks a truncated start or end; newline runs become single spaces.
    """
    if not text:
        return ""
    lower = text.lower()
    positions = [
        idx for idx in (lower.find(t) for t in (query or "").lower().split()) if idx >= 0
    ]
    first = min(positions) if positions else 0
    start = max(0, first - _SNIPPET_LEAD_CHARS) if first > 0 else 0

    snippet = text[start : start + max_len]
    if start > 0:
        snippet = "..." + snippet
    if start + max_len < len(text):
        snippet += "..."
    return _NEWLINES_RE.sub(" ", snippet).strip()
