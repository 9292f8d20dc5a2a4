"""Database schema initialization."""

from __future__ import annotations

import sqlite3

CURRENT_VERSION = 1


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the schema (idempotent) and upgrade legacy text embeddings."""
    from clirag.db.migrations import run_migrations
    from clirag.db.vectors import migrate_text_embeddings

    run_migrations(conn)
    migrate_text_embeddings(conn)
