"""Helpers shared by the CLI commands: config loading and index construction."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from chatindex.cli.errors import err_config, warn_lexical_only
from chatindex.config import ChatIndexConfig, ConfigError, load_config
from chatindex.engine import ChatIndex
from chatindex.providers.embedding import LiteLLMEmbeddingProvider, required_api_key_env

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool = False) -> None:
    """Route the ``chatindex`` logger through a rich handler on stderr."""
    log = logging.getLogger("chatindex")
    for handler in list(log.handlers):
        if isinstance(handler, RichHandler):
            log.removeHandler(handler)
    log.addHandler(RichHandler(console=err_console, show_path=False, markup=False))
    log.setLevel(logging.DEBUG if verbose else logging.INFO)


def load_cli_config(db: Path | None) -> ChatIndexConfig:
    """Load config and apply the --db flag; exit 1 with a message on bad config."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if db is not None:
        cfg.store.path = db
    return cfg


def build_index(cfg: ChatIndexConfig, use_embeddings: bool = True) -> ChatIndex:
    """Construct (not open) a ChatIndex with the configured embedding provider."""
    provider = None
    if use_embeddings:
        provider = LiteLLMEmbeddingProvider(
            model=cfg.embedding.model,
            dimensions=cfg.embedding.dimensions,
            num_retries=cfg.embedding.num_retries,
        )
        if not provider.is_available():
            console.print(
                warn_lexical_only(cfg.embedding.model, required_api_key_env(cfg.embedding.model))
            )
    return ChatIndex(cfg.store.path, embedding_provider=provider, config=cfg)
