"""chatindex index — index one session from a JSON messages file."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer

from chatindex.cli.common import build_index, console, load_cli_config
from chatindex.cli.errors import err_bad_messages_file
from chatindex.db.models import SessionMetadata
from chatindex.ingest.chunker import Message
from chatindex.providers.sessions import parse_message
from chatindex.sync import is_subagent_key


def index_cmd(
    session: Annotated[
        str,
        typer.Option("--session", "-s", help="Session key to index under."),
    ],
    file: Annotated[
        Path,
        typer.Option("--file", "-f", help='JSON list of {"role", "content"} messages.'),
    ],
    display_name: Annotated[
        str,
        typer.Option("--display-name", help="Human-readable session name."),
    ] = "",
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chat index database (created if missing)."),
    ] = None,
) -> None:
    """Index a single session's messages."""
    messages = _read_messages(file)
    cfg = load_cli_config(db)
    metadata = SessionMetadata(display_name=display_name, is_subagent=is_subagent_key(session))

    with build_index(cfg) as index:
        changed = asyncio.run(index.index_session(session, messages, metadata))
        chunks = index.repository.count_chunks_by_session(session)

    if changed:
        console.print(f"[green]✓[/] Indexed {session} — {chunks} chunks")
    else:
        console.print(f"[dim]↷ Unchanged — {chunks} chunks already stored[/]")


def _read_messages(path: Path) -> list[Message]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        console.print(err_bad_messages_file(str(path), str(exc)))
        raise typer.Exit(1) from exc
    if not isinstance(raw, list):
        console.print(err_bad_messages_file(str(path), "top level is not a list"))
        raise typer.Exit(1)
    return [m for m in (parse_message(r) for r in raw) if m is not None]
