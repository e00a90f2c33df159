"""Session-data provider contract and an HTTP JSON gateway client.

The host exposes two read-only calls:

  sessions.list     {"limit": N}                        → {"sessions": [...]}
  sessions.preview  {"keys": [...], "limit": N,
                     "maxChars": M}                     → {"previews": {key: [msg, ...]}}

Responses may arrive bare or wrapped in ``result`` / ``payload``. Individual
malformed entries are skipped and logged; a response whose overall shape is
wrong raises SessionProviderError so the caller can skip that batch.

The gateway token is read from an environment variable, never from config.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from chatindex.ingest.chunker import Message, clean_text

logger = logging.getLogger(__name__)

_USER_AGENT = "chatindex/0.1"
_ALLOWED_SCHEMES = {"https", "http"}
_MAX_BYTES = 20 * 1024 * 1024  # 20 MB
DEFAULT_TOKEN_ENV = "CHATINDEX_GATEWAY_TOKEN"


class SessionProviderError(RuntimeError):
    """Raised when the session-data provider fails or answers with an unexpected shape."""


@dataclass(frozen=True)
class SessionDescriptor:
    """One entry of the host's session roster."""

    key: str
    display_name: str = ""
    goal_title: str = ""
    condo_name: str = ""


@runtime_checkable
class SessionDataProvider(Protocol):
    async def list_sessions(self, limit: int) -> list[SessionDescriptor]: ...

    async def preview_sessions(
        self, keys: list[str], limit: int, max_chars: int
    ) -> dict[str, list[Message]]: ...


# ------------------------------------------------------------------
# Response parsing
# ------------------------------------------------------------------


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict):
        for wrapper in ("result", "payload"):
            if wrapper in payload and isinstance(payload[wrapper], dict):
                return payload[wrapper]
    return payload


def parse_session_list(payload: Any) -> list[SessionDescriptor]:
    """Build descriptors from a ``sessions.list`` response."""
    body = _unwrap(payload)
    sessions = body.get("sessions") if isinstance(body, dict) else None
    if not isinstance(sessions, list):
        raise SessionProviderError("sessions.list returned unexpected shape")

    result: list[SessionDescriptor] = []
    for entry in sessions:
        key = entry.get("key") if isinstance(entry, dict) else None
        if not isinstance(key, str) or not key:
            logger.warning("Skipping session entry without a key: %r", entry)
            continue
        result.append(
            SessionDescriptor(
                key=key,
                display_name=str(entry.get("displayName") or entry.get("label") or ""),
                goal_title=str(entry.get("goalTitle") or ""),
                condo_name=str(entry.get("condoName") or ""),
            )
        )
    return result


def parse_message(raw: Any) -> Message | None:
    """Coerce one preview message into a Message, or None if it has no text.

    ``content`` may be a string or a list of ``{"type": "text", "text": ...}``
    parts; ``text`` is accepted as a fallback.
    """
    if not isinstance(raw, dict):
        return None
    content = raw.get("content")
    if isinstance(content, list):
        text = "\n".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    elif isinstance(content, str):
        text = content
    else:
        text = raw.get("text") if isinstance(raw.get("text"), str) else ""
    role = raw.get("role") if isinstance(raw.get("role"), str) else ""
    return Message(role=clean_text(role), text=clean_text(text))


def parse_previews(payload: Any) -> dict[str, list[Message]]:
    """Build ``{session_key: [Message, ...]}`` from a ``sessions.preview`` response."""
    body = _unwrap(payload)
    previews = body.get("previews") if isinstance(body, dict) else None
    if not isinstance(previews, dict):
        raise SessionProviderError("sessions.preview returned unexpected shape")

    result: dict[str, list[Message]] = {}
    for key, raw_messages in previews.items():
        if not isinstance(raw_messages, list):
            logger.warning("Skipping malformed preview for %s", key)
            continue
        messages = [m for m in (parse_message(r) for r in raw_messages) if m is not None]
        result[key] = messages
    return result


# ------------------------------------------------------------------
# HTTP gateway client
# ------------------------------------------------------------------


class HttpSessionProvider:
    """Call the host gateway over HTTP with JSON ``{"method", "params"}`` bodies.

    Blocking ``urllib`` calls run in a worker thread so the event loop stays
    free while a request is outstanding.

    Args:
        url: Gateway RPC endpoint (http:// or https://).
        token_env: Env var holding an optional bearer token.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, url: str, token_env: str = DEFAULT_TOKEN_ENV, timeout: float = 30.0) -> None:
        scheme = urllib.parse.urlparse(url).scheme
        if scheme not in _ALLOWED_SCHEMES:
            raise ValueError(
                f"Unsupported gateway URL scheme '{scheme}'. Only https:// and http:// are allowed."
            )
        self.url = url
        self.token_env = token_env
        self.timeout = timeout

    async def list_sessions(self, limit: int) -> list[SessionDescriptor]:
        payload = await self._call("sessions.list", {"limit": limit})
        return parse_session_list(payload)

    async def preview_sessions(
        self, keys: list[str], limit: int, max_chars: int
    ) -> dict[str, list[Message]]:
        payload = await self._call(
            "sessions.preview", {"keys": keys, "limit": limit, "maxChars": max_chars}
        )
        return parse_previews(payload)

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        return await asyncio.to_thread(self._post, method, params)

    def _post(self, method: str, params: dict[str, Any]) -> Any:
        body = json.dumps({"method": method, "params": params}).encode()
        headers = {"Content-Type": "application/json", "User-Agent": _USER_AGENT}
        if token := os.environ.get(self.token_env):
            headers["Authorization"] = f"Bearer {token}"
        req = urllib.request.Request(self.url, data=body, headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw = resp.read(_MAX_BYTES + 1)
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise SessionProviderError(f"{method} failed: {exc}") from exc
        if len(raw) > _MAX_BYTES:
            raise SessionProviderError(f"{method} response exceeds {_MAX_BYTES} bytes")
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SessionProviderError(f"{method} returned invalid JSON: {exc}") from exc
