"""Paragraph-based document chunker.

Paragraphs are accumulated until adding the next one would exceed
``chunk_size`` characters; the last ``overlap`` characters of a finished
chunk are carried into the next one so context spans chunk boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass

from clirag.db.models import Chunk


@dataclass
class Document:
    """A fetched document ready for chunking."""

    url: str
    title: str
    text: str
    description: str = ""


class DocumentChunker:
    def __init__(self, chunk_size: int = 500, overlap: int = 50) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, document: Document) -> list[Chunk]:
        """Split *document* into sequentially indexed Chunks (ids ``{url}_{i}``)."""
        paragraphs = [p.strip() for p in document.text.splitlines() if p.strip()]

        texts: list[str] = []
        current = ""
        for paragraph in paragraphs:
            if current and len(current) + len(paragraph) > self.chunk_size:
                texts.append(current.strip())
                if self.overlap > 0 and len(current) > self.overlap:
                    current = current[-self.overlap:] + "\n" + paragraph
                else:
                    current = paragraph
            else:
                current = f"{current}\n{paragraph}" if current else paragraph

        if current.strip():
            texts.append(current.strip())

        return [
            Chunk(
                url=document.url,
                chunk_index=i,
                text=text,
                title=document.title,
                description=document.description,
            )
            for i, text in enumerate(texts)
        ]
