"""Chat index ingest pipeline — chunker, hashing, embedding cache, session indexer."""

from chatindex.ingest.chunker import Message, TranscriptChunker
from chatindex.ingest.embedding_cache import EmbeddingCache
from chatindex.ingest.hashing import content_hash, text_hash
from chatindex.ingest.indexer import SessionIndexer

__all__ = [
    "EmbeddingCache",
    "Message",
    "SessionIndexer",
    "TranscriptChunker",
    "content_hash",
    "text_hash",
]
