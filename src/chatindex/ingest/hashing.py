"""Content fingerprints: per-session change detection and cache keys."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable

from chatindex.ingest.chunker import Message


def content_hash(messages: Iterable[Message]) -> str:
    """SHA-256 over each message's role then text, in order.

    Every field is length-prefixed so that moving characters between fields or
    messages changes the digest. Equal digests mean the session needs no reindex.
    """
    h = hashlib.sha256()
    for msg in messages:
        for field in (msg.role or "", msg.text):
            data = field.encode()
            h.update(b"%d:" % len(data))
            h.update(data)
    return h.hexdigest()


def text_hash(text: str) -> str:
    """SHA-256 of a chunk's content; the embedding cache key."""
    return hashlib.sha256(text.encode()).hexdigest()
