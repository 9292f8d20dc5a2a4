"""Ingest pipeline: chunk → embed → atomic write → mark source done.

Embedding is best effort. When the embedder is unavailable or a call fails,
the chunk is stored without a vector and can be filled in later with
backfill_embeddings(). The store write itself is all-or-nothing per document.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from clirag.db.repository import ChunkStore
from clirag.ingest.chunker import Document, DocumentChunker
from clirag.rag.llm_client import Embedder

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    url: str
    chunk_count: int
    embedded: int


class IngestPipeline:
    """Write documents into the chunk store.

    Args:
        store: Open ChunkStore.
        embedder: Embedding capability (may be unavailable).
        chunker: Chunk producer.
    """

    def __init__(
        self,
        store: ChunkStore,
        embedder: Embedder,
        chunker: DocumentChunker | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chunker = chunker or DocumentChunker()

    def ingest_document(
        self,
        document: Document,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> IngestResult:
        """Chunk, embed and store *document*, then mark its URL as ingested.

        Raises:
            StoreError: If the batch write fails (nothing is written).
        """
        chunks = self._chunker.chunk(document)
        embedded = 0
        for i, chunk in enumerate(chunks):
            if self._embedder.available:
                chunk.embedding = self._embedder.embed(chunk.text)
                if chunk.embedding is not None:
                    embedded += 1
            if on_progress is not None:
                on_progress(i + 1, len(chunks))

        self._store.put_chunks(chunks)
        self._store.mark_ingested(document.url, document.title, len(chunks))
        logger.info("Ingested %s: %d chunks (%d embedded)", document.url, len(chunks), embedded)
        return IngestResult(url=document.url, chunk_count=len(chunks), embedded=embedded)

    def backfill_embeddings(self, on_progress: Callable[[int, int], None] | None = None) -> int:
        """Embed stored chunks that have no vector. Returns the number filled."""
        if not self._embedder.available:
            return 0
        missing = list(self._store.scan(lambda c: c.embedding is None))
        filled = 0
        for i, chunk in enumerate(missing):
            vector = self._embedder.embed(chunk.text)
            if vector is not None:
                self._store.set_embedding(chunk.id, vector)
                filled += 1
            if on_progress is not None:
                on_progress(i + 1, len(missing))
        return filled
