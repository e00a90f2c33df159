"""Chat index database layer."""

from chatindex.db.connection import Database
from chatindex.db.migrations import MIGRATIONS, run_migrations
from chatindex.db.repository import Repository
from chatindex.db.schema import initialize, open_store
from chatindex.db.vectors import VEC_TABLE, deserialize_vector, ensure_vec_table, serialize_vector

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "open_store",
    "run_migrations",
    "MIGRATIONS",
    "VEC_TABLE",
    "ensure_vec_table",
    "serialize_vector",
    "deserialize_vector",
]
