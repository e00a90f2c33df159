"""chatindex configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (CHATINDEX_DB_PATH, CHATINDEX_EMBEDDING_MODEL,
                             CHATINDEX_GATEWAY_URL)
  3. Per-project chatindex.yaml  (current directory)
  4. Global ~/.chatindex/config.yaml
  5. Hardcoded defaults

Config files must never contain credentials (API keys, gateway tokens); use
environment variables instead. All YAML reads use yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from chatindex.ingest.chunker import CHUNK_OVERLAP_CHARS, CHUNK_TARGET_CHARS
from chatindex.providers.embedding import DEFAULT_DIMENSIONS, DEFAULT_EMBEDDING_MODEL

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".chatindex"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "chatindex.yaml"
DEFAULT_DB_PATH: Path = _GLOBAL_CONFIG_DIR / "chat-index.db"

# Key names that suggest a credential. Does NOT match legitimate keys such as
# max_entries or query_cache_ttl_seconds.
_CREDENTIAL_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(["store", "embedding", "chunker", "sync", "search"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StoreCfg:
    """Index file location (chatindex.yaml: store:)."""

    path: Path = DEFAULT_DB_PATH


@dataclass
class EmbeddingCfg:
    """Embedding provider + cache bound (chatindex.yaml: embedding:)."""

    model: str = DEFAULT_EMBEDDING_MODEL
    dimensions: int = DEFAULT_DIMENSIONS
    num_retries: int = 3
    cache_max_entries: int = 50_000  # 0 = unbounded


@dataclass
class ChunkerCfg:
    """Chunk size and overlap, in characters (chatindex.yaml: chunker:)."""

    target_chars: int = CHUNK_TARGET_CHARS
    overlap_chars: int = CHUNK_OVERLAP_CHARS


@dataclass
class SyncCfg:
    """Pull-sync against the host gateway (chatindex.yaml: sync:).

    Attributes:
        gateway_url: Host RPC endpoint; None disables sync.
        interval_seconds: Background sync period.
        session_page_limit: Sessions requested per pass. A full page is logged
            as a scale-limit warning; there is no follow-up pagination.
        preview_batch_size: Session keys per preview request.
        preview_message_limit: Most-recent messages requested per session.
        preview_max_chars: Character cap per previewed message.
        request_timeout: Seconds before a gateway request is abandoned.
    """

    gateway_url: str | None = None
    interval_seconds: float = 300.0
    session_page_limit: int = 500
    preview_batch_size: int = 64
    preview_message_limit: int = 5
    preview_max_chars: int = 2_000
    request_timeout: float = 30.0


@dataclass
class SearchCfg:
    """Hybrid retrieval tuning (chatindex.yaml: search:)."""

    default_limit: int = 20
    candidate_multiplier: int = 4
    vector_weight: float = 0.7
    snippet_chars: int = 300
    query_cache_ttl_seconds: float = 600.0
    query_cache_max_entries: int = 256


@dataclass
class ChatIndexConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    store: StoreCfg = field(default_factory=StoreCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunker: ChunkerCfg = field(default_factory=ChunkerCfg)
    sync: SyncCfg = field(default_factory=SyncCfg)
    search: SearchCfg = field(default_factory=SearchCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_credentials(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any credential-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _CREDENTIAL_RE.search(str(k)):
                    raise ConfigError(
                        f"Config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config '{path}' must be a mapping at the top level.")
    return data


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> ChatIndexConfig:
    """Build a *ChatIndexConfig* from a merged raw YAML dict."""
    cfg = ChatIndexConfig()

    if "store" in data:
        st = data["store"] or {}
        if st.get("path"):
            cfg.store = StoreCfg(path=Path(str(st["path"])).expanduser())

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
            cache_max_entries=int(e.get("cache_max_entries", cfg.embedding.cache_max_entries)),
        )

    if "chunker" in data:
        c = data["chunker"] or {}
        cfg.chunker = ChunkerCfg(
            target_chars=int(c.get("target_chars", cfg.chunker.target_chars)),
            overlap_chars=int(c.get("overlap_chars", cfg.chunker.overlap_chars)),
        )

    if "sync" in data:
        s = data["sync"] or {}
        cfg.sync = SyncCfg(
            gateway_url=s.get("gateway_url") or cfg.sync.gateway_url,
            interval_seconds=float(s.get("interval_seconds", cfg.sync.interval_seconds)),
            session_page_limit=int(s.get("session_page_limit", cfg.sync.session_page_limit)),
            preview_batch_size=int(s.get("preview_batch_size", cfg.sync.preview_batch_size)),
            preview_message_limit=int(
                s.get("preview_message_limit", cfg.sync.preview_message_limit)
            ),
            preview_max_chars=int(s.get("preview_max_chars", cfg.sync.preview_max_chars)),
            request_timeout=float(s.get("request_timeout", cfg.sync.request_timeout)),
        )

    if "search" in data:
        q = data["search"] or {}
        cfg.search = SearchCfg(
            default_limit=int(q.get("default_limit", cfg.search.default_limit)),
            candidate_multiplier=int(
                q.get("candidate_multiplier", cfg.search.candidate_multiplier)
            ),
            vector_weight=float(q.get("vector_weight", cfg.search.vector_weight)),
            snippet_chars=int(q.get("snippet_chars", cfg.search.snippet_chars)),
            query_cache_ttl_seconds=float(
                q.get("query_cache_ttl_seconds", cfg.search.query_cache_ttl_seconds)
            ),
            query_cache_max_entries=int(
                q.get("query_cache_max_entries", cfg.search.query_cache_max_entries)
            ),
        )

    return cfg


def _validate(cfg: ChatIndexConfig) -> None:
    if not 0.0 <= cfg.search.vector_weight <= 1.0:
        raise ConfigError(
            f"search.vector_weight must be in [0.0, 1.0], got {cfg.search.vector_weight}"
        )
    if cfg.search.candidate_multiplier < 1:
        raise ConfigError("search.candidate_multiplier must be >= 1")
    if cfg.sync.preview_batch_size < 1:
        raise ConfigError("sync.preview_batch_size must be >= 1")
    if not 0 <= cfg.chunker.overlap_chars < cfg.chunker.target_chars:
        raise ConfigError("chunker.overlap_chars must be in [0, chunker.target_chars)")
    if cfg.sync.gateway_url and cfg.sync.gateway_url.startswith(("file://", "ftp://")):
        raise ConfigError(
            f"sync.gateway_url must be an http(s) URL: '{cfg.sync.gateway_url}'"
        )


def _apply_env_overrides(cfg: ChatIndexConfig) -> ChatIndexConfig:
    """Apply CHATINDEX_* environment variable overrides."""
    if path := os.environ.get("CHATINDEX_DB_PATH"):
        cfg.store.path = Path(path).expanduser()
    if model := os.environ.get("CHATINDEX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if url := os.environ.get("CHATINDEX_GATEWAY_URL"):
        cfg.sync.gateway_url = url
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> ChatIndexConfig:
    """Load and return a merged *ChatIndexConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *chatindex.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a config file contains credential-like keys or an
            out-of-range value.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_credentials(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _check_no_credentials(raw_project, project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg
