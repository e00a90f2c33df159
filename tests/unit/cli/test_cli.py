"""Tests for the chatindex CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from conftest import FakeSessionProvider
from typer.testing import CliRunner

from chatindex.cli.common import console
from chatindex.cli.main import app
from chatindex.ingest.chunker import Message

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    """Keep the CLI away from the real home config and any API keys."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(console, "width", 200)
    monkeypatch.setattr("chatindex.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    for var in (
        "CHATINDEX_DB_PATH",
        "CHATINDEX_EMBEDDING_MODEL",
        "CHATINDEX_GATEWAY_URL",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def db(tmp_path) -> Path:
    return tmp_path / "chat-index.db"


def _messages_file(tmp_path: Path, messages: list[dict]) -> Path:
    path = tmp_path / "messages.json"
    path.write_text(json.dumps(messages), encoding="utf-8")
    return path


def _index(tmp_path: Path, db: Path, key: str = "agent:main:1"):
    path = _messages_file(
        tmp_path,
        [
            {"role": "user", "content": "Run the staging deploy please"},
            {"role": "assistant", "content": [{"type": "text", "text": "Staging deploy done"}]},
        ],
    )
    return runner.invoke(app, ["index", "--session", key, "--file", str(path), "--db", str(db)])


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "chatindex" in result.output


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "chatindex" in result.output


# ---------------------------------------------------------------------------
# index
# ---------------------------------------------------------------------------


def test_index_creates_session(tmp_path, db) -> None:
    result = _index(tmp_path, db)
    assert result.exit_code == 0, result.output
    assert "Indexed" in result.output
    assert db.exists()


def test_index_unchanged_second_time(tmp_path, db) -> None:
    _index(tmp_path, db)
    result = _index(tmp_path, db)
    assert result.exit_code == 0
    assert "Unchanged" in result.output


def test_index_warns_when_embeddings_unavailable(tmp_path, db) -> None:
    result = _index(tmp_path, db)
    assert "lexical search only" in result.output


def test_index_bad_json(tmp_path, db) -> None:
    path = tmp_path / "messages.json"
    path.write_text("{not json", encoding="utf-8")
    result = runner.invoke(app, ["index", "--session", "k", "--file", str(path), "--db", str(db)])
    assert result.exit_code == 1
    assert "Cannot read messages" in result.output


def test_index_not_a_list(tmp_path, db) -> None:
    path = _messages_file(tmp_path, {"role": "user"})  # type: ignore[arg-type]
    result = runner.invoke(app, ["index", "--session", "k", "--file", str(path), "--db", str(db)])
    assert result.exit_code == 1
    assert "not a list" in result.output


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------


def test_search_without_db(db) -> None:
    result = runner.invoke(app, ["search", "anything", "--db", str(db)])
    assert result.exit_code == 1
    assert "No chat index found" in result.output


def test_search_finds_indexed_session(tmp_path, db) -> None:
    _index(tmp_path, db, key="deploy-session")
    result = runner.invoke(app, ["search", "staging", "--db", str(db), "--no-vector"])
    assert result.exit_code == 0, result.output
    assert "deploy-session" in result.output
    assert "[user]" in result.output


def test_search_no_match(tmp_path, db) -> None:
    _index(tmp_path, db)
    result = runner.invoke(app, ["search", "kubernetes", "--db", str(db)])
    assert result.exit_code == 0
    assert "No matches" in result.output


def test_search_rejects_zero_limit(tmp_path, db) -> None:
    _index(tmp_path, db)
    result = runner.invoke(app, ["search", "staging", "--limit", "0", "--db", str(db)])
    assert result.exit_code != 0


def test_search_uses_env_db_path(tmp_path, db, monkeypatch) -> None:
    _index(tmp_path, db, key="env-session")
    monkeypatch.setenv("CHATINDEX_DB_PATH", str(db))
    result = runner.invoke(app, ["search", "staging"])
    assert result.exit_code == 0
    assert "env-session" in result.output


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


def test_status_without_db(db) -> None:
    result = runner.invoke(app, ["status", "--db", str(db)])
    assert result.exit_code == 0
    assert "No chat index found" in result.output


def test_status_reports_counts(tmp_path, db) -> None:
    _index(tmp_path, db, key="status-session")
    result = runner.invoke(app, ["status", "--db", str(db), "--sessions", "5"])
    assert result.exit_code == 0, result.output
    assert "Sessions:        1" in result.output
    assert "Last sync:       never" in result.output
    assert "status-session" in result.output


# ---------------------------------------------------------------------------
# sync
# ---------------------------------------------------------------------------


def test_sync_requires_gateway(db) -> None:
    result = runner.invoke(app, ["sync", "--db", str(db)])
    assert result.exit_code == 1
    assert "No gateway URL" in result.output


def test_sync_rejects_bad_scheme(db) -> None:
    result = runner.invoke(app, ["sync", "--gateway", "file:///etc/passwd", "--db", str(db)])
    assert result.exit_code == 1
    assert "scheme" in result.output


def test_sync_indexes_from_gateway(db, monkeypatch) -> None:
    host = FakeSessionProvider(
        {
            "agent:main:1": [Message("user", "first session")],
            "agent:main:2": [Message("user", "second session")],
        }
    )
    seen: dict = {}

    def _provider(url, timeout):
        seen["url"] = url
        return host

    monkeypatch.setattr("chatindex.cli.sync.HttpSessionProvider", _provider)
    result = runner.invoke(app, ["sync", "--gateway", "https://host/rpc", "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert "2 indexed" in result.output
    assert seen["url"] == "https://host/rpc"

    result = runner.invoke(app, ["status", "--db", str(db)])
    assert "Sessions:        2" in result.output


def test_sync_gateway_from_config(tmp_path, db, monkeypatch) -> None:
    (tmp_path / "chatindex.yaml").write_text(
        yaml.dump({"sync": {"gateway_url": "https://configured/rpc"}}), encoding="utf-8"
    )
    seen: dict = {}

    def _provider(url, timeout):
        seen["url"] = url
        return FakeSessionProvider({})

    monkeypatch.setattr("chatindex.cli.sync.HttpSessionProvider", _provider)
    result = runner.invoke(app, ["sync", "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert seen["url"] == "https://configured/rpc"


def test_sync_failure_exits_nonzero(db, monkeypatch) -> None:
    host = FakeSessionProvider({})
    host.fail_list = True
    monkeypatch.setattr("chatindex.cli.sync.HttpSessionProvider", lambda url, timeout: host)
    result = runner.invoke(app, ["sync", "--gateway", "https://host/rpc", "--db", str(db)])
    assert result.exit_code == 1
    assert "Sync failed" in result.output


# ---------------------------------------------------------------------------
# config errors
# ---------------------------------------------------------------------------


def test_invalid_config_exits(tmp_path, db) -> None:
    (tmp_path / "chatindex.yaml").write_text(
        yaml.dump({"embedding": {"api_key": "sk-123"}}), encoding="utf-8"
    )
    result = runner.invoke(app, ["status", "--db", str(db)])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
