"""chatindex CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from chatindex.cli.common import configure_logging
from chatindex.cli.index import index_cmd
from chatindex.cli.search import search_cmd
from chatindex.cli.status import status_cmd
from chatindex.cli.sync import sync_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("chatindex")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"chatindex {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="chatindex",
    help=(
        "chatindex — hybrid search over agent session transcripts.\n\n"
        "  chatindex sync    Pull sessions from the host gateway and index them.\n"
        "  chatindex search  Ranked lexical + semantic search, one hit per session."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging."),
    ] = False,
) -> None:
    """chatindex — hybrid search over agent session transcripts."""
    configure_logging(verbose)


app.command("sync")(sync_cmd)
app.command("search")(search_cmd)
app.command("index")(index_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed chatindex version."""
    typer.echo(f"chatindex {_installed_version()}")


if __name__ == "__main__":
    app()
