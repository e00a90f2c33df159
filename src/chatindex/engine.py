"""ChatIndex — the engine object that owns the store and everything built on it.

Usage:
    index = ChatIndex(db_path, embedding_provider=LiteLLMEmbeddingProvider())
    index.open()
    await index.sync(HttpSessionProvider(url))
    results = await index.search("staging deploy", limit=5)
    index.close()
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from chatindex.config import ChatIndexConfig
from chatindex.db.connection import Database
from chatindex.db.models import IndexStats, SessionMetadata
from chatindex.db.repository import Repository
from chatindex.db.schema import open_store
from chatindex.db.vectors import ensure_vec_table
from chatindex.ingest.chunker import Message, TranscriptChunker
from chatindex.ingest.indexer import SessionIndexer
from chatindex.providers.embedding import EmbeddingProvider
from chatindex.providers.sessions import SessionDataProvider
from chatindex.rag.query_cache import ExpiringCache
from chatindex.rag.retriever import HybridRetriever, RetrieverConfig, SearchResult
from chatindex.sync import SyncHandle, SyncOrchestrator, SyncReport

logger = logging.getLogger(__name__)


class ChatIndexNotOpenError(RuntimeError):
    """Raised when the index is used before open() or after close()."""


class ChatIndex:
    """Local hybrid search index over conversational transcripts.

    Args:
        db_path:            SQLite file (created if missing).
        embedding_provider: Optional; without it the index is lexical-only.
        config:             Loaded configuration; defaults when omitted.
        query_cache:        Query-embedding cache; one is created from
                            ``config.search`` when omitted.
        enable_vec:         Set False to skip loading sqlite-vec entirely.
    """

    def __init__(
        self,
        db_path: Path | str,
        embedding_provider: EmbeddingProvider | None = None,
        config: ChatIndexConfig | None = None,
        query_cache: ExpiringCache[bytes] | None = None,
        enable_vec: bool = True,
    ) -> None:
        self.config = config or ChatIndexConfig()
        self._db = Database(db_path, enable_vec=enable_vec)
        self._provider = embedding_provider
        self._query_cache = query_cache or ExpiringCache(
            ttl_seconds=self.config.search.query_cache_ttl_seconds,
            max_entries=self.config.search.query_cache_max_entries,
        )
        self._conn: sqlite3.Connection | None = None
        self._repo: Repository | None = None
        self._indexer: SessionIndexer | None = None
        self._retriever: HybridRetriever | None = None
        self._orchestrator: SyncOrchestrator | None = None
        self._sync_handle: SyncHandle | None = None

    @property
    def db_path(self) -> Path:
        return self._db.db_path

    @property
    def has_vec(self) -> bool:
        return self._repo is not None and self._repo.has_vec

    @property
    def repository(self) -> Repository:
        if self._repo is None:
            raise ChatIndexNotOpenError("Chat index not initialized; call open() first")
        return self._repo

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> ChatIndex:
        """Open (or create) the store and wire up indexer, retriever and sync."""
        if self._conn is not None:
            return self
        self._conn = open_store(self._db)

        has_vec = self._db.has_vec
        if has_vec:
            dims = (
                self._provider.dimensions
                if self._provider is not None
                else self.config.embedding.dimensions
            )
            has_vec = ensure_vec_table(self._conn, dims)

        self._repo = Repository(self._conn, has_vec=has_vec)
        chunker = TranscriptChunker(
            target_chars=self.config.chunker.target_chars,
            overlap_chars=self.config.chunker.overlap_chars,
        )
        self._indexer = SessionIndexer(self._repo, chunker, self._provider)
        self._retriever = HybridRetriever(
            self._repo,
            self._provider,
            RetrieverConfig(
                default_limit=self.config.search.default_limit,
                candidate_multiplier=self.config.search.candidate_multiplier,
                vector_weight=self.config.search.vector_weight,
                snippet_chars=self.config.search.snippet_chars,
            ),
            self._query_cache,
        )
        self._orchestrator = SyncOrchestrator(
            self._repo,
            self._indexer,
            self.config.sync,
            cache_max_entries=self.config.embedding.cache_max_entries,
        )
        logger.info("Chat index initialized at %s (vec=%s)", self._db.db_path, has_vec)
        return self

    def close(self) -> None:
        """Stop background sync and release the store. Outstanding calls are abandoned."""
        self.stop_background_sync()
        if self._orchestrator is not None:
            self._orchestrator.close()
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self._repo = None
        self._indexer = None
        self._retriever = None
        self._orchestrator = None

    def __enter__(self) -> ChatIndex:
        return self.open()

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Indexing + sync
    # ------------------------------------------------------------------

    async def index_session(
        self,
        session_key: str,
        messages: list[Message],
        metadata: SessionMetadata | None = None,
    ) -> bool:
        """Incrementally index one session. Returns True if it was (re)written."""
        return await self._require(self._indexer).index_session(session_key, messages, metadata)

    async def sync(self, provider: SessionDataProvider) -> SyncReport | None:
        """Run one sync pass; None if another pass is already running."""
        return await self._require(self._orchestrator).sync(provider)

    def start_background_sync(
        self, provider: SessionDataProvider, interval_seconds: float | None = None
    ) -> SyncHandle:
        """Start periodic sync on the running event loop; idempotent while running."""
        if self._sync_handle is not None and self._sync_handle.running:
            return self._sync_handle
        self._sync_handle = self._require(self._orchestrator).start(provider, interval_seconds)
        return self._sync_handle

    def stop_background_sync(self) -> None:
        if self._sync_handle is not None:
            self._sync_handle.stop()
            self._sync_handle = None

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def search(
        self, query: str, limit: int | None = None, use_vector: bool = True
    ) -> list[SearchResult]:
        """Ranked session-level results for *query*; empty when the index is closed."""
        if self._retriever is None:
            return []
        return await self._retriever.search(query, limit=limit, use_vector=use_vector)

    def stats(self) -> IndexStats:
        if self._repo is None:
            return IndexStats(initialized=False)
        stats = self._repo.stats()
        stats.syncing = self._orchestrator is not None and self._orchestrator.syncing
        return stats

    @staticmethod
    def _require(component):
        if component is None:
            raise ChatIndexNotOpenError("Chat index not initialized; call open() first")
        return component
