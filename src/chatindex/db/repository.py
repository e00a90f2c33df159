"""Repository pattern for all chat index database operations.

Single interface for: sessions, chunks, FTS5 search, vec search, the
embedding cache and the meta key/value table. Every reindex of a session goes
through replace_session(), which runs as one transaction.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterable, Sequence

from chatindex.db.models import (
    CachedEmbedding,
    Chunk,
    ChunkDraft,
    IndexStats,
    SessionMetadata,
    SessionRecord,
)
from chatindex.db.vectors import VEC_TABLE

logger = logging.getLogger(__name__)

_LAST_SYNC_KEY = "last_sync"
# Stay well under SQLite's bound-parameter limit.
_MAX_PARAMS = 500

_CHUNK_COLUMNS = """
    c.id, c.session_id, c.chunk_index, c.content, c.role, c.token_count,
    s.session_key, s.display_name, s.goal_title, s.condo_name, s.is_subagent
"""


def now_ms() -> int:
    return int(time.time() * 1000)


def build_fts_query(query: str) -> str:
    """Quote each whitespace-separated term so FTS5 treats it literally.

    Embedded double quotes are doubled. Terms are implicitly AND-ed.
    """
    terms = [t for t in query.strip().split() if t]
    return " ".join('"' + t.replace('"', '""') + '"' for t in terms)


class Repository:
    """Data access layer for all chat index entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use. ``has_vec`` says whether the chunks_vec table
    is available; without it every vector operation is a no-op.
    """

    def __init__(self, conn: sqlite3.Connection, has_vec: bool = False) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see chatindex.db.schema.initialize).
            has_vec: True if sqlite-vec is loaded and chunks_vec exists.
        """
        self._conn = conn
        self.has_vec = has_vec

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_key: str) -> SessionRecord | None:
        row = self._conn.execute(
            """
            SELECT id, session_key, display_name, goal_title, condo_name, is_subagent,
                   content_hash, indexed_at
            FROM sessions WHERE session_key = ?
            """,
            (session_key,),
        ).fetchone()
        return _row_to_session(row) if row else None

    def get_session_hash(self, session_key: str) -> str | None:
        """Return the stored content hash for *session_key*, or None if unindexed."""
        row = self._conn.execute(
            "SELECT content_hash FROM sessions WHERE session_key = ?", (session_key,)
        ).fetchone()
        return row["content_hash"] if row else None

    def list_sessions(self) -> list[SessionRecord]:
        """Return all sessions, most recently indexed first."""
        rows = self._conn.execute(
            """
            SELECT id, session_key, display_name, goal_title, condo_name, is_subagent,
                   content_hash, indexed_at
            FROM sessions ORDER BY indexed_at DESC, id DESC
            """
        ).fetchall()
        return [_row_to_session(r) for r in rows]

    def count_sessions(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]

    def replace_session(
        self,
        session_key: str,
        content_hash: str,
        metadata: SessionMetadata,
        drafts: Sequence[ChunkDraft],
        vectors: Sequence[bytes | None] | None = None,
        new_cache_entries: Iterable[CachedEmbedding] = (),
    ) -> int:
        """Atomically replace a session's chunk set, hash and metadata.

        In one transaction: delete the session's chunks with their FTS and vec
        rows, upsert the session row, insert *drafts* with FTS rows, write
        *new_cache_entries* and the vec rows given by *vectors* (aligned with
        *drafts*; None entries get no vec row). Any error rolls the whole unit
        back so readers keep seeing the previous committed state.

        A vec row that sqlite-vec rejects (e.g. wrong width) is skipped and
        logged; its chunk stays lexical-only.

        Returns:
            The session's row id.
        """
        if vectors is not None and len(vectors) != len(drafts):
            raise ValueError(
                f"vectors ({len(vectors)}) must align with drafts ({len(drafts)})"
            )

        with self._conn:
            row = self._conn.execute(
                "SELECT id FROM sessions WHERE session_key = ?", (session_key,)
            ).fetchone()
            if row is not None:
                session_id = row["id"]
                self._delete_chunk_rows(session_id)
                self._conn.execute(
                    """
                    UPDATE sessions
                    SET content_hash = ?, indexed_at = ?, display_name = ?,
                        goal_title = ?, condo_name = ?, is_subagent = ?
                    WHERE id = ?
                    """,
                    (content_hash, now_ms(), *_metadata_params(metadata), session_id),
                )
            else:
                cur = self._conn.execute(
                    """
                    INSERT INTO sessions (session_key, content_hash, indexed_at, display_name,
                                          goal_title, condo_name, is_subagent)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (session_key, content_hash, now_ms(), *_metadata_params(metadata)),
                )
                session_id = cur.lastrowid

            for entry in new_cache_entries:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO embedding_cache (text_hash, embedding, provider, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (entry.text_hash, entry.embedding, entry.provider, entry.created_at),
                )

            for i, draft in enumerate(drafts):
                cur = self._conn.execute(
                    """
                    INSERT INTO chunks (session_id, chunk_index, content, role, token_count)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (session_id, draft.chunk_index, draft.content, draft.role, draft.token_count),
                )
                chunk_id = cur.lastrowid
                self._conn.execute(
                    "INSERT INTO chunks_fts (rowid, content) VALUES (?, ?)",
                    (chunk_id, draft.content),
                )
                vector = vectors[i] if vectors is not None else None
                if vector is not None and self.has_vec:
                    try:
                        self._conn.execute(
                            f"INSERT INTO {VEC_TABLE} (rowid, embedding) VALUES (?, ?)",
                            (chunk_id, vector),
                        )
                    except sqlite3.Error as exc:
                        logger.warning(
                            "Vector insert failed for %s chunk %d: %s",
                            session_key,
                            draft.chunk_index,
                            exc,
                        )
        return session_id

    def delete_session(self, session_key: str) -> bool:
        """Delete a session with its chunks, FTS and vec rows. Returns True if found."""
        with self._conn:
            row = self._conn.execute(
                "SELECT id FROM sessions WHERE session_key = ?", (session_key,)
            ).fetchone()
            if row is None:
                return False
            self._delete_chunk_rows(row["id"])
            self._conn.execute("DELETE FROM sessions WHERE id = ?", (row["id"],))
        return True

    def _delete_chunk_rows(self, session_id: int) -> None:
        """Delete chunks + FTS/vec entries (cascade not available on virtual tables)."""
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM chunks WHERE session_id = ?", (session_id,)
            ).fetchall()
        ]
        for batch in _batched(ids, _MAX_PARAMS):
            placeholders = ",".join("?" * len(batch))
            self._conn.execute(
                f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", batch
            )
            if self.has_vec:
                self._conn.execute(
                    f"DELETE FROM {VEC_TABLE} WHERE rowid IN ({placeholders})", batch
                )
        self._conn.execute("DELETE FROM chunks WHERE session_id = ?", (session_id,))

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def count_chunks(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    def count_chunks_by_session(self, session_key: str) -> int:
        return self._conn.execute(
            """
            SELECT COUNT(*) FROM chunks c JOIN sessions s ON s.id = c.session_id
            WHERE s.session_key = ?
            """,
            (session_key,),
        ).fetchone()[0]

    def get_chunks_by_session(self, session_key: str) -> list[Chunk]:
        """Return a session's chunks in ordinal order."""
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS}
            FROM chunks c JOIN sessions s ON s.id = c.session_id
            WHERE s.session_key = ?
            ORDER BY c.chunk_index
            """,
            (session_key,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_chunks_by_ids(self, chunk_ids: Sequence[int]) -> dict[int, Chunk]:
        result: dict[int, Chunk] = {}
        for batch in _batched(list(chunk_ids), _MAX_PARAMS):
            placeholders = ",".join("?" * len(batch))
            rows = self._conn.execute(
                f"""
                SELECT {_CHUNK_COLUMNS}
                FROM chunks c JOIN sessions s ON s.id = c.session_id
                WHERE c.id IN ({placeholders})
                """,
                batch,
            ).fetchall()
            result.update((r["id"], _row_to_chunk(r)) for r in rows)
        return result

    def count_vec_rows(self) -> int:
        if not self.has_vec:
            return 0
        return self._conn.execute(f"SELECT COUNT(*) FROM {VEC_TABLE}").fetchone()[0]

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def search_fts(self, query: str, limit: int = 10) -> list[tuple[Chunk, float]]:
        """BM25 full-text search. Returns (chunk, rank) sorted best-first.

        FTS5 rank is bm25(), which is negative; lower (more negative) = better.
        """
        fts_query = build_fts_query(query)
        if not fts_query:
            return []
        rows = self._conn.execute(
            f"""
            SELECT {_CHUNK_COLUMNS}, chunks_fts.rank AS fts_rank
            FROM chunks_fts
            JOIN chunks c ON c.id = chunks_fts.rowid
            JOIN sessions s ON s.id = c.session_id
            WHERE chunks_fts MATCH ?
            ORDER BY chunks_fts.rank
            LIMIT ?
            """,
            (fts_query, limit),
        ).fetchall()
        return [(_row_to_chunk(r), float(r["fts_rank"])) for r in rows]

    # ------------------------------------------------------------------
    # Vec search
    # ------------------------------------------------------------------

    def search_vec(self, vector: bytes, limit: int = 10) -> list[tuple[Chunk, float]]:
        """Nearest-neighbour search. Returns (chunk, distance) sorted by distance."""
        if not self.has_vec:
            return []
        vec_rows = self._conn.execute(
            f"SELECT rowid, distance FROM {VEC_TABLE} WHERE embedding MATCH ? AND k = ? ORDER BY distance",
            (vector, limit),
        ).fetchall()
        chunks = self.get_chunks_by_ids([r["rowid"] for r in vec_rows])
        return [
            (chunks[r["rowid"]], float(r["distance"]))
            for r in vec_rows
            if r["rowid"] in chunks
        ]

    # ------------------------------------------------------------------
    # Embedding cache
    # ------------------------------------------------------------------

    def get_cached_embeddings(
        self, text_hashes: Iterable[str], provider: str | None = None
    ) -> dict[str, bytes]:
        """Return {text_hash: embedding blob} for every hash already cached.

        With *provider*, entries written by any other embedding model are misses.
        """
        hashes = list(dict.fromkeys(text_hashes))
        found: dict[str, bytes] = {}
        for batch in _batched(hashes, _MAX_PARAMS):
            placeholders = ",".join("?" * len(batch))
            sql = f"SELECT text_hash, embedding FROM embedding_cache WHERE text_hash IN ({placeholders})"
            params = list(batch)
            if provider is not None:
                sql += " AND provider = ?"
                params.append(provider)
            rows = self._conn.execute(sql, params).fetchall()
            found.update((r["text_hash"], bytes(r["embedding"])) for r in rows)
        return found

    def get_cached_embedding(self, text_hash: str) -> CachedEmbedding | None:
        row = self._conn.execute(
            "SELECT text_hash, embedding, provider, created_at FROM embedding_cache WHERE text_hash = ?",
            (text_hash,),
        ).fetchone()
        if row is None:
            return None
        return CachedEmbedding(
            text_hash=row["text_hash"],
            embedding=bytes(row["embedding"]),
            provider=row["provider"],
            created_at=row["created_at"],
        )

    def count_cached_embeddings(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]

    def prune_embedding_cache(self, max_entries: int) -> int:
        """Delete the oldest cache entries beyond *max_entries*. Returns rows deleted.

        ``max_entries <= 0`` disables the bound.
        """
        if max_entries <= 0:
            return 0
        with self._conn:
            cur = self._conn.execute(
                """
                DELETE FROM embedding_cache WHERE text_hash IN (
                    SELECT text_hash FROM embedding_cache
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (max_entries,),
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Meta
    # ------------------------------------------------------------------

    def get_meta(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value)
            )

    def get_last_sync(self) -> int | None:
        value = self.get_meta(_LAST_SYNC_KEY)
        return int(value) if value else None

    def set_last_sync(self, timestamp_ms: int | None = None) -> None:
        self.set_meta(_LAST_SYNC_KEY, str(timestamp_ms if timestamp_ms is not None else now_ms()))

    def stats(self) -> IndexStats:
        return IndexStats(
            initialized=True,
            session_count=self.count_sessions(),
            chunk_count=self.count_chunks(),
            cached_embeddings=self.count_cached_embeddings(),
            has_vec=self.has_vec,
            last_sync=self.get_last_sync(),
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _batched(items: list, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _metadata_params(metadata: SessionMetadata) -> tuple:
    return (
        metadata.display_name or None,
        metadata.goal_title or None,
        metadata.condo_name or None,
        int(metadata.is_subagent),
    )


def _row_to_metadata(row: sqlite3.Row) -> SessionMetadata:
    return SessionMetadata(
        display_name=row["display_name"] or "",
        goal_title=row["goal_title"] or "",
        condo_name=row["condo_name"] or "",
        is_subagent=bool(row["is_subagent"]),
    )


def _row_to_session(row: sqlite3.Row) -> SessionRecord:
    return SessionRecord(
        id=row["id"],
        session_key=row["session_key"],
        content_hash=row["content_hash"],
        indexed_at=row["indexed_at"],
        metadata=_row_to_metadata(row),
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        session_id=row["session_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        role=row["role"],
        token_count=row["token_count"],
        session_key=row["session_key"],
        metadata=_row_to_metadata(row),
    )
