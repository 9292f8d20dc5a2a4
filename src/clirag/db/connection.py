"""SQLite connection layer."""

from __future__ import annotations

import sqlite3
from pathlib import Path


class Database:
    """Local SQLite database holding the chunk corpus."""

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing,
                parent directories included). ``~`` is expanded.
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection in WAL mode and return it."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # check_same_thread=False: the ChunkStore serializes writes itself.
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
