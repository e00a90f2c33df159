"""chatindex rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from chatindex.cli.errors import err_no_db
    console.print(err_no_db(path))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str) -> str:
    """No index database at *db_path*."""
    return (
        f"[red]Error:[/] No chat index found at '{db_path}'.\n"
        "  Run:  chatindex sync --gateway <url>   or   chatindex index --session <key> --file <messages.json>"
    )


def err_no_gateway() -> str:
    """sync called without a gateway URL."""
    return (
        "[red]Error:[/] No gateway URL configured.\n"
        "  Pass:  chatindex sync --gateway https://host/rpc\n"
        "  Or set sync.gateway_url in chatindex.yaml, or export CHATINDEX_GATEWAY_URL=<url>"
    )


def err_config(message: str) -> str:
    """Config file failed validation."""
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_bad_messages_file(path: str, reason: str) -> str:
    """--file is not a JSON list of messages."""
    return (
        f"[red]Error:[/] Cannot read messages from '{path}': {reason}\n"
        '  Expected a JSON list such as  [{"role": "user", "content": "..."}]'
    )


def warn_lexical_only(model: str, env_var: str | None) -> str:
    """Embedding provider unavailable — vector search disabled for this run."""
    hint = f"  Set:  export {env_var}=..." if env_var else "  Check the embedding provider is reachable."
    return (
        f"[yellow]Warning:[/] Embedding model '{model}' is unavailable; using lexical search only.\n"
        f"{hint}"
    )
