"""chatindex status — index size, vector capability and last sync time."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from chatindex.cli.common import console, load_cli_config
from chatindex.cli.errors import err_no_db
from chatindex.engine import ChatIndex


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chat index database."),
    ] = None,
    sessions: Annotated[
        int,
        typer.Option("--sessions", min=0, help="Also list the N most recently indexed sessions."),
    ] = 0,
) -> None:
    """Show chat index status."""
    cfg = load_cli_config(db)
    if not cfg.store.path.exists():
        console.print(err_no_db(str(cfg.store.path)))
        raise typer.Exit(0)

    with ChatIndex(cfg.store.path, config=cfg) as index:
        stats = index.stats()
        recent = index.repository.list_sessions()[:sessions] if sessions else []

    last_sync = (
        datetime.fromtimestamp(stats.last_sync / 1000).strftime("%Y-%m-%d %H:%M:%S")
        if stats.last_sync
        else "never"
    )
    body = (
        f"Database:        {cfg.store.path}\n"
        f"Sessions:        {stats.session_count}\n"
        f"Chunks:          {stats.chunk_count}\n"
        f"Cached vectors:  {stats.cached_embeddings}\n"
        f"Vector search:   {'[green]enabled[/]' if stats.has_vec else '[yellow]disabled[/]'}\n"
        f"Last sync:       {last_sync}"
    )
    console.print(Panel(body, title="Chat index", expand=False))

    if recent:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Session")
        table.add_column("Name")
        table.add_column("Indexed", justify="right")
        for s in recent:
            indexed = datetime.fromtimestamp(s.indexed_at / 1000).strftime("%Y-%m-%d %H:%M")
            table.add_row(escape(s.session_key), escape(s.display_name) or "[dim]—[/]", indexed)
        console.print(table)
