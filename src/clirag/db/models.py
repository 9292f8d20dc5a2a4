"""Domain models for the clirag database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np


def chunk_id(url: str, chunk_index: int) -> str:
    """Deterministic chunk id: source URL + ordinal."""
    return f"{url}_{chunk_index}"


@dataclass
class Chunk:
    url: str
    chunk_index: int
    text: str
    title: str = ""
    description: str = ""
    # decoded float32 array when read back from the store
    embedding: list[float] | np.ndarray | None = field(default=None, compare=False, repr=False)
    created_at: str | None = None  # set by the database on insert
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = chunk_id(self.url, self.chunk_index)


@dataclass
class IngestedSource:
    url: str
    title: str
    chunk_count: int
    ingested_at: str | None = None


@dataclass
class CrawledSite:
    base_url: str
    page_count: int
    crawled_at: str | None = None
