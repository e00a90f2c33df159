"""Domain models for the chat index database layer."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class SessionMetadata:
    """Fixed-shape descriptive fields stored alongside a session."""

    display_name: str = ""
    goal_title: str = ""
    condo_name: str = ""
    is_subagent: bool = False


@dataclass
class SessionRecord:
    id: int
    session_key: str
    content_hash: str | None
    indexed_at: int  # epoch milliseconds
    metadata: SessionMetadata = field(default_factory=SessionMetadata)

    @property
    def display_name(self) -> str:
        return self.metadata.display_name


@dataclass
class ChunkDraft:
    """A chunk produced by the chunker, not yet persisted."""

    chunk_index: int
    content: str
    role: str
    token_count: int


@dataclass
class Chunk:
    id: int
    session_id: int
    chunk_index: int
    content: str
    role: str | None
    token_count: int | None
    session_key: str = ""
    metadata: SessionMetadata = field(default_factory=SessionMetadata)


@dataclass
class CachedEmbedding:
    text_hash: str
    embedding: bytes
    provider: str
    created_at: int


@dataclass
class IndexStats:
    initialized: bool
    session_count: int = 0
    chunk_count: int = 0
    cached_embeddings: int = 0
    has_vec: bool = False
    last_sync: int | None = None
    syncing: bool = False
