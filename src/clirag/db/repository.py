"""Chunk store: all clirag database operations.

Single interface for: chunks (with float32 BLOB embeddings), ingested-URL
tracking, and crawled-domain tracking. Bulk writes are atomic per batch;
a failing member rolls back the whole batch and raises StoreError.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager

from clirag.db.models import Chunk, CrawledSite, IngestedSource
from clirag.db.vectors import decode_vector, dimension_of, encode_vector

logger = logging.getLogger(__name__)

_CHUNK_COLUMNS = "id, url, title, description, text, chunk_index, embedding, created_at"


class StoreError(RuntimeError):
    """Raised when a write transaction fails and has been rolled back."""


class ChunkStore:
    """Data access layer for chunks and source tracking.

    Wraps an open sqlite3.Connection; the connection is owned by the caller
    and must be closed after use. Writes are serialized through a lock so a
    store can be shared by concurrent query sessions. A read made on another
    thread while a write transaction is open goes through a per-thread
    connection, so it sees only committed rows (WAL snapshot).
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see clirag.db.schema.initialize).
        """
        self._conn = conn
        self._write_lock = threading.Lock()
        self._writer: int | None = None
        self._path = _database_file(conn)
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []

    def close(self) -> None:
        """Close the per-thread reader connections opened by this store."""
        while self._readers:
            self._readers.pop().close()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        with self._write_lock:
            self._writer = threading.get_ident()
            try:
                yield self._conn
            finally:
                self._writer = None

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that shows committed rows only."""
        if self._writer == threading.get_ident():
            yield self._conn
            return
        # An in-memory database has no file to open a second connection on.
        if self._write_lock.acquire(blocking=self._path is None):
            try:
                yield self._conn
            finally:
                self._write_lock.release()
            return
        yield self._reader()

    def _reader(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self._path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            self._readers.append(conn)
            logger.debug("Opened reader connection for thread %d", threading.get_ident())
        return conn

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._reading() as conn:
            return conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._reading() as conn:
            return conn.execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def put_chunks(self, chunks: Iterable[Chunk]) -> int:
        """Upsert *chunks* in a single transaction. Returns the number written.

        Raises:
            StoreError: If any member fails (including an embedding whose
                dimension differs from the corpus dimension). Nothing from the
                batch is written in that case.
        """
        batch = list(chunks)
        if not batch:
            return 0

        with self._writing() as conn:
            try:
                self._check_dimensions(batch)
                for chunk in batch:
                    blob = encode_vector(chunk.embedding) if chunk.embedding is not None else None
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO chunks
                            (id, url, title, description, text, chunk_index, embedding)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            chunk.id,
                            chunk.url,
                            chunk.title,
                            chunk.description,
                            chunk.text,
                            chunk.chunk_index,
                            blob,
                        ),
                    )
                conn.commit()
            except Exception as exc:
                conn.rollback()
                raise StoreError(f"Failed to write batch of {len(batch)} chunks: {exc}") from exc

        logger.debug("Wrote %d chunks", len(batch))
        return len(batch)

    def set_embedding(self, chunk_id: str, embedding: list[float]) -> None:
        """Backfill the embedding of an existing chunk.

        Raises:
            StoreError: On dimension mismatch or write failure.
        """
        with self._writing() as conn:
            try:
                dims = self.embedding_dimension()
                if dims is not None and dims != len(embedding):
                    raise ValueError(
                        f"embedding dimension {len(embedding)} does not match corpus dimension {dims}"
                    )
                conn.execute(
                    "UPDATE chunks SET embedding = ? WHERE id = ?",
                    (encode_vector(embedding), chunk_id),
                )
                conn.commit()
            except Exception as exc:
                conn.rollback()
                raise StoreError(f"Failed to store embedding for '{chunk_id}': {exc}") from exc

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        """Return a chunk by id, or None if not found."""
        row = self._fetchone(f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id = ?", (chunk_id,))
        return _row_to_chunk(row) if row else None

    def scan(self, predicate: Callable[[Chunk], bool] | None = None) -> Iterator[Chunk]:
        """Yield every stored chunk (optionally filtered by *predicate*)."""
        rows = self._fetchall(f"SELECT {_CHUNK_COLUMNS} FROM chunks ORDER BY url, chunk_index")
        for row in rows:
            chunk = _row_to_chunk(row)
            if predicate is None or predicate(chunk):
                yield chunk

    def scan_embedded(self) -> Iterator[Chunk]:
        """Yield only chunks that carry a stored vector."""
        rows = self._fetchall(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE typeof(embedding) = 'blob'"
        )
        for row in rows:
            yield _row_to_chunk(row)

    def count_chunks(self, url: str | None = None) -> int:
        """Return the number of chunks, optionally restricted to *url*."""
        if url is None:
            return self._fetchone("SELECT COUNT(*) FROM chunks")[0]
        return self._fetchone("SELECT COUNT(*) FROM chunks WHERE url = ?", (url,))[0]

    def count_missing_embeddings(self) -> int:
        """Chunks without a usable vector (none, or unconverted legacy text)."""
        return self._fetchone(
            "SELECT COUNT(*) FROM chunks WHERE typeof(embedding) != 'blob'"
        )[0]

    def embedding_dimension(self) -> int | None:
        """Dimension shared by stored vectors, or None when no vector exists."""
        row = self._fetchone(
            "SELECT embedding FROM chunks WHERE typeof(embedding) = 'blob' LIMIT 1"
        )
        return dimension_of(row["embedding"]) if row else None

    def delete_source(self, url: str) -> int:
        """Delete all chunks and the ingest record for *url*. Returns chunks removed."""
        with self._writing() as conn:
            try:
                cur = conn.execute("DELETE FROM chunks WHERE url = ?", (url,))
                conn.execute("DELETE FROM ingested_urls WHERE url = ?", (url,))
                conn.commit()
            except Exception as exc:
                conn.rollback()
                raise StoreError(f"Failed to delete '{url}': {exc}") from exc
        return cur.rowcount

    def clear(self) -> int:
        """Wipe chunks and all source tracking atomically. Returns chunks removed."""
        with self._writing() as conn:
            try:
                count = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
                conn.execute("DELETE FROM chunks")
                conn.execute("DELETE FROM crawled_urls")
                conn.execute("DELETE FROM ingested_urls")
                conn.commit()
            except Exception as exc:
                conn.rollback()
                raise StoreError(f"Failed to clear the database: {exc}") from exc
        logger.info("Cleared %d chunks", count)
        return count

    # ------------------------------------------------------------------
    # Ingested URLs
    # ------------------------------------------------------------------

    def is_ingested(self, url: str) -> bool:
        return self._fetchone("SELECT 1 FROM ingested_urls WHERE url = ?", (url,)) is not None

    def mark_ingested(self, url: str, title: str, chunk_count: int) -> None:
        with self._writing() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO ingested_urls (url, title, chunk_count, ingested_at)
                VALUES (?, ?, ?, datetime('now'))
                """,
                (url, title, chunk_count),
            )
            conn.commit()

    def list_ingested(self) -> list[IngestedSource]:
        """Return ingested URLs, most recent first."""
        rows = self._fetchall(
            "SELECT url, title, chunk_count, ingested_at FROM ingested_urls "
            "ORDER BY ingested_at DESC, url"
        )
        return [
            IngestedSource(
                url=r["url"],
                title=r["title"],
                chunk_count=r["chunk_count"],
                ingested_at=r["ingested_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Crawled domains
    # ------------------------------------------------------------------

    def is_crawled(self, base_url: str) -> bool:
        return (
            self._fetchone("SELECT 1 FROM crawled_urls WHERE base_url = ?", (base_url,))
            is not None
        )

    def mark_crawled(self, base_url: str, page_count: int) -> None:
        with self._writing() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO crawled_urls (base_url, page_count, crawled_at)
                VALUES (?, ?, datetime('now'))
                """,
                (base_url, page_count),
            )
            conn.commit()

    def list_crawled(self) -> list[CrawledSite]:
        """Return crawled sites, most recent first."""
        rows = self._fetchall(
            "SELECT base_url, page_count, crawled_at FROM crawled_urls "
            "ORDER BY crawled_at DESC, base_url"
        )
        return [
            CrawledSite(
                base_url=r["base_url"],
                page_count=r["page_count"],
                crawled_at=r["crawled_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_dimensions(self, batch: list[Chunk]) -> None:
        """Raise ValueError if the batch would mix vector dimensions."""
        dims = {len(c.embedding) for c in batch if c.embedding is not None}
        if not dims:
            return
        if len(dims) > 1:
            raise ValueError(f"batch mixes embedding dimensions {sorted(dims)}")
        stored = self.embedding_dimension()
        if stored is not None and stored not in dims:
            raise ValueError(
                f"embedding dimension {dims.pop()} does not match corpus dimension {stored}"
            )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    blob = row["embedding"]
    return Chunk(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        description=row["description"],
        text=row["text"],
        chunk_index=row["chunk_index"],
        embedding=decode_vector(blob) if isinstance(blob, bytes) else None,
        created_at=row["created_at"],
    )


def _database_file(conn: sqlite3.Connection) -> str | None:
    """Filesystem path of the main database, or None for an in-memory one."""
    row = conn.execute("PRAGMA database_list").fetchone()
    return row[2] or None
