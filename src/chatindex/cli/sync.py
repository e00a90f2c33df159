"""chatindex sync — pull sessions from the host gateway and index them.

  chatindex sync --gateway https://host/rpc          one pass
  chatindex sync --watch --interval 300              one pass, then every 300s until Ctrl-C
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from chatindex.cli.common import build_index, console, load_cli_config
from chatindex.cli.errors import err_no_gateway
from chatindex.engine import ChatIndex
from chatindex.providers.sessions import HttpSessionProvider
from chatindex.sync import SyncReport


def sync_cmd(
    gateway: Annotated[
        str | None,
        typer.Option("--gateway", "-g", help="Gateway RPC URL (overrides config)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the chat index database (created if missing)."),
    ] = None,
    watch: Annotated[
        bool,
        typer.Option("--watch", help="Keep running and sync on an interval."),
    ] = False,
    interval: Annotated[
        float | None,
        typer.Option("--interval", min=1.0, help="Seconds between passes with --watch."),
    ] = None,
) -> None:
    """Sync session transcripts from the host into the local index."""
    cfg = load_cli_config(db)
    url = gateway or cfg.sync.gateway_url
    if not url:
        console.print(err_no_gateway())
        raise typer.Exit(1)

    try:
        provider = HttpSessionProvider(url, timeout=cfg.sync.request_timeout)
    except ValueError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc

    with build_index(cfg) as index:
        if not watch:
            report = asyncio.run(index.sync(provider))
            if report is None:
                console.print("[red]✗ Sync failed[/] — see log output above.")
                raise typer.Exit(1)
            _print_report(report)
            return

        try:
            asyncio.run(_watch(index, provider, interval or cfg.sync.interval_seconds))
        except KeyboardInterrupt:
            console.print("\n[dim]Stopped.[/]")


async def _watch(index: ChatIndex, provider: HttpSessionProvider, interval: float) -> None:
    report = await index.sync(provider)
    if report is not None:
        _print_report(report)
    handle = index.start_background_sync(provider, interval)
    console.print(f"[dim]Watching — syncing every {interval:.0f}s. Ctrl-C to stop.[/]")
    try:
        await asyncio.Event().wait()
    finally:
        handle.stop()


def _print_report(report: SyncReport) -> None:
    console.print(
        f"[green]✓[/] {report.sessions_seen} sessions seen · "
        f"{report.indexed} indexed · {report.unchanged} unchanged · {report.failed} failed"
    )
    if report.skipped_batches:
        console.print(f"  [yellow]{report.skipped_batches} preview batch(es) skipped[/]")
    if report.truncated:
        console.print("  [yellow]Session list hit the page limit; some sessions were not indexed.[/]")
