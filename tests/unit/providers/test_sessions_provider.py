"""Tests for session-data parsing and the HTTP gateway client."""

from __future__ import annotations

import asyncio
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from chatindex.ingest.chunker import Message
from chatindex.ingest.indexer import SessionIndexer
from chatindex.providers.sessions import (
    HttpSessionProvider,
    SessionDataProvider,
    SessionDescriptor,
    SessionProviderError,
    parse_message,
    parse_previews,
    parse_session_list,
)

# ------------------------------------------------------------------
# parse_session_list
# ------------------------------------------------------------------


def test_parse_session_list_bare():
    payload = {
        "sessions": [
            {"key": "agent:main:1", "displayName": "Deploys", "goalTitle": "Ship", "condoName": "Ops"},
            {"key": "agent:main:2", "label": "Fallback label"},
        ]
    }
    sessions = parse_session_list(payload)
    assert sessions == [
        SessionDescriptor("agent:main:1", "Deploys", "Ship", "Ops"),
        SessionDescriptor("agent:main:2", "Fallback label"),
    ]


@pytest.mark.parametrize("wrapper", ["result", "payload"])
def test_parse_session_list_wrapped(wrapper):
    payload = {wrapper: {"sessions": [{"key": "k"}]}}
    assert [s.key for s in parse_session_list(payload)] == ["k"]


def test_parse_session_list_skips_entries_without_key():
    payload = {"sessions": [{"displayName": "no key"}, "junk", {"key": ""}, {"key": "ok"}]}
    assert [s.key for s in parse_session_list(payload)] == ["ok"]


@pytest.mark.parametrize("payload", [None, [], {"sessions": "nope"}, {"other": []}])
def test_parse_session_list_bad_shape(payload):
    with pytest.raises(SessionProviderError):
        parse_session_list(payload)


# ------------------------------------------------------------------
# parse_message / parse_previews
# ------------------------------------------------------------------


def test_parse_message_string_content():
    assert parse_message({"role": "user", "content": "hi"}) == Message("user", "hi")


def test_parse_message_parts_content():
    raw = {
        "role": "assistant",
        "content": [
            {"type": "text", "text": "first"},
            {"type": "image", "url": "x"},
            {"type": "text", "text": "second"},
        ],
    }
    assert parse_message(raw) == Message("assistant", "first\nsecond")


def test_parse_message_text_fallback():
    assert parse_message({"role": "tool", "text": "output"}) == Message("tool", "output")


def test_parse_message_non_dict():
    assert parse_message("just a string") is None


def test_parse_message_missing_role():
    assert parse_message({"content": "x"}) == Message("", "x")


def test_parse_previews():
    payload = {
        "result": {
            "previews": {
                "a": [{"role": "user", "content": "hello"}],
                "b": [],
                "c": "malformed",
            }
        }
    }
    previews = parse_previews(payload)
    assert previews == {"a": [Message("user", "hello")], "b": []}


def test_parse_previews_bad_shape():
    with pytest.raises(SessionProviderError):
        parse_previews({"previews": []})


def test_lone_surrogate_is_replaced_and_indexable(repo):
    payload = json.loads(r'{"previews": {"k": [{"role": "user", "content": "bad \ud800 text"}]}}')
    messages = parse_previews(payload)["k"]
    assert messages == [Message("user", "bad ? text")]

    indexer = SessionIndexer(repo)
    assert asyncio.run(indexer.index_session("k", messages)) is True
    assert [c.content for c in repo.get_chunks_by_session("k")] == ["[user] bad ? text"]


# ------------------------------------------------------------------
# HttpSessionProvider
# ------------------------------------------------------------------


def _response(payload) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(payload).encode()
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


def test_http_provider_satisfies_protocol():
    assert isinstance(HttpSessionProvider("https://host/rpc"), SessionDataProvider)


@pytest.mark.parametrize("url", ["file:///etc/passwd", "ftp://host/x", "host/rpc"])
def test_http_provider_rejects_bad_scheme(url):
    with pytest.raises(ValueError, match="scheme"):
        HttpSessionProvider(url)


def test_http_list_sessions(monkeypatch):
    monkeypatch.setenv("CHATINDEX_GATEWAY_TOKEN", "secret-token")
    provider = HttpSessionProvider("https://host/rpc", timeout=5)
    with patch(
        "chatindex.providers.sessions.urllib.request.urlopen",
        return_value=_response({"sessions": [{"key": "k1"}]}),
    ) as urlopen:
        sessions = asyncio.run(provider.list_sessions(limit=500))

    assert [s.key for s in sessions] == ["k1"]
    req = urlopen.call_args.args[0]
    assert json.loads(req.data) == {"method": "sessions.list", "params": {"limit": 500}}
    assert req.get_header("Authorization") == "Bearer secret-token"
    assert urlopen.call_args.kwargs["timeout"] == 5


def test_http_preview_sessions(monkeypatch):
    monkeypatch.delenv("CHATINDEX_GATEWAY_TOKEN", raising=False)
    provider = HttpSessionProvider("http://localhost:8080/rpc")
    payload = {"previews": {"k1": [{"role": "user", "content": "hi"}]}}
    with patch(
        "chatindex.providers.sessions.urllib.request.urlopen",
        return_value=_response(payload),
    ) as urlopen:
        previews = asyncio.run(provider.preview_sessions(["k1"], limit=5, max_chars=2000))

    assert previews == {"k1": [Message("user", "hi")]}
    req = urlopen.call_args.args[0]
    assert json.loads(req.data)["params"] == {"keys": ["k1"], "limit": 5, "maxChars": 2000}
    assert req.get_header("Authorization") is None


def test_http_network_error_is_wrapped():
    provider = HttpSessionProvider("https://host/rpc")
    with patch(
        "chatindex.providers.sessions.urllib.request.urlopen",
        side_effect=urllib.error.URLError("connection refused"),
    ):
        with pytest.raises(SessionProviderError, match="sessions.list"):
            asyncio.run(provider.list_sessions(limit=10))


def test_http_invalid_json_is_wrapped():
    provider = HttpSessionProvider("https://host/rpc")
    resp = _response({})
    resp.read.return_value = b"<html>not json</html>"
    with patch("chatindex.providers.sessions.urllib.request.urlopen", return_value=resp):
        with pytest.raises(SessionProviderError, match="invalid JSON"):
            asyncio.run(provider.list_sessions(limit=10))
