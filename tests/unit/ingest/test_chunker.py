"""Tests for TranscriptChunker and token estimation."""

from __future__ import annotations

import pytest

from chatindex.ingest.chunker import (
    CHUNK_OVERLAP_CHARS,
    CHUNK_TARGET_CHARS,
    Message,
    TranscriptChunker,
    count_tokens,
)


def _long(role: str, n: int, ch: str = "x") -> Message:
    return Message(role=role, text=ch * n)


def test_count_tokens_rounds_up():
    assert count_tokens("") == 0
    assert count_tokens("abcd") == 1
    assert count_tokens("abcde") == 2


def test_defaults():
    chunker = TranscriptChunker()
    assert chunker.target_chars == CHUNK_TARGET_CHARS == 1600
    assert chunker.overlap_chars == CHUNK_OVERLAP_CHARS == 320


def test_empty_input():
    assert TranscriptChunker().chunk([]) == []


def test_whitespace_messages_skipped():
    drafts = TranscriptChunker().chunk([Message("user", "   "), Message("assistant", "\n\t")])
    assert drafts == []


def test_single_message():
    drafts = TranscriptChunker().chunk([Message("user", "hello")])
    assert len(drafts) == 1
    assert drafts[0].content == "[user] hello"
    assert drafts[0].role == "user"
    assert drafts[0].chunk_index == 0
    assert drafts[0].token_count == count_tokens("[user] hello")


def test_small_messages_share_a_chunk():
    drafts = TranscriptChunker().chunk(
        [Message("user", "deploy staging?"), Message("assistant", "done, staging is green")]
    )
    assert len(drafts) == 1
    assert drafts[0].content == "[user] deploy staging?\n[assistant] done, staging is green"
    assert drafts[0].role == "assistant"


def test_missing_role_is_unknown():
    drafts = TranscriptChunker().chunk([Message("", "hi")])
    assert drafts[0].content == "[unknown] hi"
    assert drafts[0].role == "unknown"


def test_flush_with_overlap():
    msgs = [_long("user", 1000, "a"), _long("assistant", 1000, "b")]
    drafts = TranscriptChunker().chunk(msgs)

    assert len(drafts) == 2
    assert drafts[0].content == "[user] " + "a" * 1000
    assert drafts[0].role == "user"
    # The second chunk starts with the tail of the first.
    tail = drafts[0].content[-320:]
    assert drafts[1].content.startswith(tail)
    assert drafts[1].content.endswith("[assistant] " + "b" * 1000)
    assert drafts[1].role == "assistant"
    assert [d.chunk_index for d in drafts] == [0, 1]


def test_no_overlap_when_disabled():
    msgs = [_long("user", 1000, "a"), _long("assistant", 1000, "b")]
    drafts = TranscriptChunker(overlap_chars=0).chunk(msgs)
    assert drafts[1].content == "[assistant] " + "b" * 1000


def test_oversized_message_is_not_split():
    drafts = TranscriptChunker().chunk([_long("tool", 5000)])
    assert len(drafts) == 1
    assert len(drafts[0].content) == 5000 + len("[tool] ")


def test_many_messages_produce_consecutive_indices():
    msgs = [Message("user" if i % 2 else "assistant", f"message {i} " * 40) for i in range(30)]
    drafts = TranscriptChunker().chunk(msgs)
    assert len(drafts) > 1
    assert [d.chunk_index for d in drafts] == list(range(len(drafts)))
    # A chunk grows past the target only through the overlap seed plus one message.
    longest_message = max(len(f"[{m.role}] {m.text}") for m in msgs)
    assert all(len(d.content) <= CHUNK_TARGET_CHARS + longest_message for d in drafts)


def test_deterministic():
    msgs = [Message("user", f"line {i} " * 50) for i in range(20)]
    chunker = TranscriptChunker()
    assert chunker.chunk(msgs) == chunker.chunk(msgs)


@pytest.mark.parametrize(
    "target, overlap",
    [(0, 0), (100, 100), (100, -1)],
)
def test_invalid_configuration(target, overlap):
    with pytest.raises(ValueError):
        TranscriptChunker(target_chars=target, overlap_chars=overlap)
