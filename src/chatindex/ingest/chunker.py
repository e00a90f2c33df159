"""Transcript chunker — role-prefixed message packing with tail overlap.

Messages are rendered as ``[role] text`` and packed into a buffer. When the
next message would push the buffer past ``target_chars`` the buffer is
flushed, and the next buffer starts with the last ``overlap_chars``
characters of the flushed chunk so context carries across the boundary.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from chatindex.db.models import ChunkDraft

CHUNK_TARGET_CHARS = 1600  # ~400 tokens
CHUNK_OVERLAP_CHARS = 320  # ~80 tokens


@dataclass(frozen=True)
class Message:
    role: str
    text: str


def clean_text(text: str) -> str:
    """Replace lone surrogates (from JSON escapes such as ``\\ud800``) with ``?``.

    SQLite and hashlib both need text that encodes as UTF-8.
    """
    return text.encode("utf-8", "replace").decode("utf-8")


def count_tokens(text: str) -> int:
    """Approximate token count: 4 characters ≈ 1 token, rounded up."""
    return math.ceil(len(text) / 4)


class TranscriptChunker:
    """Split an ordered list of messages into overlapping chunks.

    Whitespace-only messages are skipped. Each chunk is tagged with the role
    of the last message appended to it. Output is deterministic.
    """

    def __init__(
        self,
        target_chars: int = CHUNK_TARGET_CHARS,
        overlap_chars: int = CHUNK_OVERLAP_CHARS,
    ) -> None:
        if target_chars < 1:
            raise ValueError("target_chars must be >= 1")
        if not 0 <= overlap_chars < target_chars:
            raise ValueError("overlap_chars must be in [0, target_chars)")
        self.target_chars = target_chars
        self.overlap_chars = overlap_chars

    def chunk(self, messages: list[Message]) -> list[ChunkDraft]:
        drafts: list[ChunkDraft] = []
        buffer = ""
        role = "unknown"

        for msg in messages:
            if not msg.text.strip():
                continue
            msg_role = msg.role or "unknown"
            prefixed = f"[{msg_role}] {msg.text}"

            if buffer and len(buffer) + len(prefixed) > self.target_chars:
                flushed = self._flush(drafts, buffer, role)
                buffer = ""
                if self.overlap_chars and len(flushed) > self.overlap_chars:
                    buffer = flushed[-self.overlap_chars :]

            buffer = f"{buffer}\n{prefixed}" if buffer else prefixed
            role = msg_role

        self._flush(drafts, buffer, role)
        return drafts

    @staticmethod
    def _flush(drafts: list[ChunkDraft], buffer: str, role: str) -> str:
        content = buffer.strip()
        if content:
            drafts.append(
                ChunkDraft(
                    chunk_index=len(drafts),
                    content=content,
                    role=role,
                    token_count=count_tokens(content),
                )
            )
        return content
