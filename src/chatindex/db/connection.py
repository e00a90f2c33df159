"""SQLite connection layer with optional sqlite-vec extension."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import sqlite_vec

logger = logging.getLogger(__name__)


class Database:
    """Single-file SQLite store with best-effort sqlite-vec vector support.

    If the vec extension cannot be loaded the connection is still returned and
    ``has_vec`` is False for the lifetime of this object: lexical indexing and
    search keep working, vector search is disabled.
    """

    def __init__(self, db_path: Path | str, enable_vec: bool = True) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            enable_vec: Try to load sqlite-vec on connect.
        """
        self.db_path = Path(db_path)
        self.enable_vec = enable_vec
        self.has_vec = False
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, try to load sqlite-vec, and return the connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.DatabaseError:
            conn.close()
            raise
        self.has_vec = self._load_vec(conn) if self.enable_vec else False
        return conn

    def _load_vec(self, conn: sqlite3.Connection) -> bool:
        try:
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
        except (AttributeError, sqlite3.Error) as exc:
            # AttributeError: interpreter built without extension loading.
            logger.error("sqlite-vec not available, vector search disabled: %s", exc)
            return False
        return True

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
