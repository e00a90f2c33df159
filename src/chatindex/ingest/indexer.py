"""Incremental session indexing: hash check → chunk → embed → persist."""

from __future__ import annotations

import logging

from chatindex.db.models import SessionMetadata
from chatindex.db.repository import Repository
from chatindex.ingest.chunker import Message, TranscriptChunker, clean_text
from chatindex.ingest.embedding_cache import EmbeddingCache
from chatindex.ingest.hashing import content_hash
from chatindex.providers.embedding import EmbeddingProvider

logger = logging.getLogger(__name__)


class SessionIndexer:
    """Index one session's messages, skipping work when nothing changed.

    Args:
        repo:     Open Repository instance.
        chunker:  Chunker used on changed sessions.
        provider: Optional embedding provider. Without one, or when the store
                  has no vector index, sessions are indexed lexical-only.
    """

    def __init__(
        self,
        repo: Repository,
        chunker: TranscriptChunker | None = None,
        provider: EmbeddingProvider | None = None,
    ) -> None:
        self._repo = repo
        self._chunker = chunker or TranscriptChunker()
        self._provider = provider
        self._cache = EmbeddingCache(repo, provider) if provider is not None else None

    async def index_session(
        self,
        session_key: str,
        messages: list[Message],
        metadata: SessionMetadata | None = None,
    ) -> bool:
        """Reindex *session_key* if its content hash changed.

        Returns:
            True if the session was (re)written, False if it was unchanged or
            *messages* was empty.
        """
        if not messages:
            return False

        messages = [Message(clean_text(m.role or ""), clean_text(m.text)) for m in messages]
        digest = content_hash(messages)
        if self._repo.get_session_hash(session_key) == digest:
            return False

        drafts = self._chunker.chunk(messages)

        vectors = None
        new_entries = []
        if drafts and self._repo.has_vec and self._cache is not None:
            resolved = await self._cache.resolve([d.content for d in drafts])
            vectors = resolved.vectors
            new_entries = resolved.new_entries
            logger.debug(
                "%s: %d chunks, %d cache hits, %d embedded",
                session_key,
                len(drafts),
                resolved.hits,
                len(new_entries),
            )

        self._repo.replace_session(
            session_key,
            digest,
            metadata or SessionMetadata(),
            drafts,
            vectors=vectors,
            new_cache_entries=new_entries,
        )
        return True
