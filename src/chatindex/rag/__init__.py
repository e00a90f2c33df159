"""Query side of the chat index: hybrid retriever and query-embedding cache."""

from chatindex.rag.query_cache import CacheEntry, ExpiringCache
from chatindex.rag.retriever import HybridRetriever, RetrieverConfig, SearchResult

__all__ = [
    "CacheEntry",
    "ExpiringCache",
    "HybridRetriever",
    "RetrieverConfig",
    "SearchResult",
]
