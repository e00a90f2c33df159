"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
import hashlib
import math
import re

import pytest

from chatindex.db.connection import Database
from chatindex.db.repository import Repository
from chatindex.db.schema import initialize
from chatindex.db.vectors import ensure_vec_table
from chatindex.ingest.chunker import Message
from chatindex.providers.sessions import SessionDescriptor, SessionProviderError

FAKE_DIMS = 64

_WORD_RE = re.compile(r"[a-z0-9]+")


class FakeEmbeddingProvider:
    """Deterministic bag-of-words embedder: each word hashes into one of FAKE_DIMS buckets."""

    def __init__(self, dimensions: int = FAKE_DIMS, available: bool = True) -> None:
        self._dimensions = dimensions
        self.available = available
        self.fail = False
        self.calls: list[list[str]] = []

    @property
    def name(self) -> str:
        return "fake/bag-of-words"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def is_available(self) -> bool:
        return self.available

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding service down")
        return [embed_text(t, self._dimensions) for t in texts]

    @property
    def texts_embedded(self) -> int:
        return sum(len(c) for c in self.calls)


def embed_text(text: str, dimensions: int = FAKE_DIMS) -> list[float]:
    vec = [0.0] * dimensions
    for word in _WORD_RE.findall(text.lower()):
        bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % dimensions
        vec[bucket] += 1.0
    norm = math.sqrt(sum(v * v for v in vec)) or 1.0
    return [v / norm for v in vec]


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "chat-index.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    """Repository over tmp_db with a FAKE_DIMS-wide vec table."""
    return Repository(tmp_db, has_vec=ensure_vec_table(tmp_db, FAKE_DIMS))


@pytest.fixture
def fake_provider():
    return FakeEmbeddingProvider()


class FakeSessionProvider:
    """In-memory host: a roster plus per-session previews."""

    def __init__(self, previews: dict[str, list[Message]], names: dict[str, str] | None = None):
        self.previews = previews
        self.names = names or {}
        self.fail_list = False
        self.fail_keys: set[str] = set()
        self.list_calls: list[int] = []
        self.preview_calls: list[tuple[list[str], int, int]] = []
        self.gate: asyncio.Event | None = None

    async def list_sessions(self, limit: int) -> list[SessionDescriptor]:
        self.list_calls.append(limit)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_list:
            raise SessionProviderError("gateway down")
        return [
            SessionDescriptor(key=k, display_name=self.names.get(k, ""))
            for k in list(self.previews)[:limit]
        ]

    async def preview_sessions(self, keys, limit, max_chars):
        self.preview_calls.append((list(keys), limit, max_chars))
        if self.fail_keys.intersection(keys):
            raise SessionProviderError("preview failed")
        return {k: self.previews[k] for k in keys if k in self.previews}
