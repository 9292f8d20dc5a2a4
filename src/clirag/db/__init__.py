"""clirag database layer."""

from clirag.db.connection import Database
from clirag.db.migrations import MIGRATIONS, run_migrations
from clirag.db.repository import ChunkStore, StoreError
from clirag.db.schema import initialize
from clirag.db.vectors import cosine_similarity, decode_vector, encode_vector

__all__ = [
    "ChunkStore",
    "Database",
    "StoreError",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "cosine_similarity",
    "decode_vector",
    "encode_vector",
]
