"""Schema initialisation and corrupt-store recovery."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from chatindex.db.connection import Database
from chatindex.db.migrations import run_migrations

logger = logging.getLogger(__name__)


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)


def open_store(db: Database) -> sqlite3.Connection:
    """Connect and initialise *db*, rebuilding it if the file is corrupt.

    A file that SQLite refuses to read is moved aside to ``<name>.corrupt``
    together with its WAL/SHM siblings, and a fresh schema is created in its
    place. The index is rebuilt by the next sync.
    """
    try:
        return _connect_and_initialize(db)
    except sqlite3.DatabaseError as exc:
        logger.error("Chat index at %s is unreadable: %s", db.db_path, exc)

    _move_aside(db.db_path)
    conn = _connect_and_initialize(db)
    logger.warning("Chat index recreated at %s; full reindex required", db.db_path)
    return conn


def _connect_and_initialize(db: Database) -> sqlite3.Connection:
    conn = db.connect()
    try:
        initialize(conn)
    except sqlite3.DatabaseError:
        conn.close()
        raise
    return conn


def _move_aside(db_path: Path) -> None:
    if db_path.exists():
        corrupt = db_path.with_name(db_path.name + ".corrupt")
        db_path.replace(corrupt)
        logger.info("Corrupt database backed up to %s", corrupt)
    for suffix in ("-wal", "-shm"):
        sibling = db_path.with_name(db_path.name + suffix)
        if sibling.exists():
            sibling.unlink()
