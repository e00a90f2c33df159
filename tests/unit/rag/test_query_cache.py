"""Tests for ExpiringCache."""

from __future__ import annotations

import pytest

from chatindex.rag.query_cache import CacheEntry, ExpiringCache


def test_put_and_get():
    cache = ExpiringCache(ttl_seconds=10)
    cache.put("k", b"v", now=100.0)
    entry = cache.get("k")
    assert entry is not None
    assert entry.value == b"v"
    assert entry.expires_at == 110.0


def test_get_missing():
    assert ExpiringCache().get("nope") is None


def test_expiry_is_explicit():
    cache = ExpiringCache(ttl_seconds=10)
    cache.put("k", 1, now=100.0)
    entry = cache.get("k")
    assert entry.is_expired(now=109.9) is False
    assert entry.is_expired(now=110.0) is True
    # Expired entries are still returned; the caller decides.
    assert cache.get("k") is entry


def test_put_refreshes_expiry():
    cache = ExpiringCache(ttl_seconds=10)
    cache.put("k", 1, now=100.0)
    cache.put("k", 2, now=200.0)
    assert cache.get("k") == CacheEntry(value=2, expires_at=210.0)
    assert len(cache) == 1


def test_evicts_least_recently_used():
    cache = ExpiringCache(max_entries=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")
    cache.put("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") is not None
    assert cache.get("c") is not None


def test_discard_and_clear():
    cache = ExpiringCache()
    cache.put("a", 1)
    cache.put("b", 2)
    cache.discard("a")
    cache.discard("missing")
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize("ttl, size", [(0, 10), (-1, 10), (10, 0)])
def test_invalid_arguments(ttl, size):
    with pytest.raises(ValueError):
        ExpiringCache(ttl_seconds=ttl, max_entries=size)
