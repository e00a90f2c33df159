"""chatindex search — ranked hybrid search over indexed sessions."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from chatindex.cli.common import build_index, console, load_cli_config
from chatindex.cli.errors import err_no_db


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum sessions to return."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chat index database."),
    ] = None,
    no_vector: Annotated[
        bool,
        typer.Option("--no-vector", help="Lexical (BM25) search only; skip embeddings."),
    ] = False,
) -> None:
    """Search indexed chat sessions."""
    cfg = load_cli_config(db)
    if not cfg.store.path.exists():
        console.print(err_no_db(str(cfg.store.path)))
        raise typer.Exit(1)

    with build_index(cfg, use_embeddings=not no_vector) as index:
        results = asyncio.run(index.search(query, limit=limit, use_vector=not no_vector))

    if not results:
        console.print(f"[yellow]No matches for[/] '{escape(query)}'.")
        return

    table = Table(show_header=True, header_style="bold", show_lines=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Score", justify="right")
    table.add_column("Session")
    table.add_column("Snippet")
    for rank, r in enumerate(results, start=1):
        label = escape(r.session_key)
        if r.display_name:
            label = f"{escape(r.display_name)}\n[dim]{escape(r.session_key)}[/]"
        table.add_row(str(rank), f"{r.score:.3f}", label, escape(r.snippet))
    console.print(table)
