"""sqlite-vec table management and float32 vector (de)serialisation."""

from __future__ import annotations

import logging
import sqlite3
import struct

import sqlite_vec

logger = logging.getLogger(__name__)

VEC_TABLE = "chunks_vec"

_DIMENSIONS_KEY = "vec_dimensions"


def serialize_vector(vector: list[float]) -> bytes:
    """Pack *vector* into the compact float32 blob sqlite-vec expects."""
    return sqlite_vec.serialize_float32(vector)


def deserialize_vector(blob: bytes) -> list[float]:
    """Inverse of serialize_vector()."""
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


def ensure_vec_table(conn: sqlite3.Connection, dimensions: int) -> bool:
    """Create the chunks_vec virtual table if it doesn't already exist.

    The dimension count is recorded in the ``meta`` table on first creation.
    A later call with a different dimension count leaves the existing table
    untouched and returns False: vectors of the wrong width cannot be stored.

    Args:
        conn: Active connection with sqlite-vec loaded and schema initialised.
        dimensions: Embedding vector dimensions (e.g. 1536).

    Returns:
        True if the table is usable for *dimensions*.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    row = conn.execute("SELECT value FROM meta WHERE key = ?", (_DIMENSIONS_KEY,)).fetchone()
    existing = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (VEC_TABLE,)
    ).fetchone()

    if existing is not None and row is not None:
        stored = int(row["value"])
        if stored != dimensions:
            logger.error(
                "Vector index was built with %d dimensions but the embedding provider "
                "returns %d; vector search disabled",
                stored,
                dimensions,
            )
            return False
        return True

    with conn:
        conn.execute(
            f"CREATE VIRTUAL TABLE IF NOT EXISTS {VEC_TABLE} USING vec0(embedding float[{dimensions}])"
        )
        conn.execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
            (_DIMENSIONS_KEY, str(dimensions)),
        )
    return True
