"""Shared pytest fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest

from clirag.db.connection import Database
from clirag.db.models import Chunk
from clirag.db.repository import ChunkStore
from clirag.db.schema import initialize


class FakeGenerator:
    """Scripted stand-in for clirag.rag.llm_client.Generator.

    Each generate() call consumes the next reply; an Exception reply is raised.
    """

    def __init__(self, replies: list[str | Exception] | None = None, available: bool = True):
        self.available = available
        self.model = "fake/model" if available else ""
        self._replies = list(replies or [])
        self.prompts: list[str] = []

    def generate(self, prompt, max_tokens=None, temperature=None, stop=None) -> str:
        self.prompts.append(prompt)
        if not self._replies:
            return ""
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeEmbedder:
    """Stand-in for clirag.rag.llm_client.Embedder backed by a lookup table."""

    def __init__(
        self,
        vectors: dict[str, list[float]] | Callable[[str], list[float] | None] | None = None,
        available: bool = True,
    ):
        self.available = available
        self.model = "fake/embed" if available else ""
        self._vectors = vectors or {}
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float] | None:
        self.calls.append(text)
        if not self.available:
            return None
        if callable(self._vectors):
            return self._vectors(text)
        return self._vectors.get(text)


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory, monkeypatch):
    """Keep tests away from the real ~/.clirag and CLIRAG_* variables."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setattr("clirag.config._GLOBAL_CONFIG_PATH", home / ".clirag" / "config.yaml")
    monkeypatch.chdir(home)
    for var in ("CLIRAG_GENERATION_MODEL", "CLIRAG_EMBEDDING_MODEL", "CLIRAG_DB"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "vectors.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def store(tmp_db) -> Iterator[ChunkStore]:
    chunk_store = ChunkStore(tmp_db)
    yield chunk_store
    chunk_store.close()


@pytest.fixture
def make_generator() -> type[FakeGenerator]:
    return FakeGenerator


@pytest.fixture
def make_embedder() -> type[FakeEmbedder]:
    return FakeEmbedder


@pytest.fixture
def make_chunk() -> Callable[..., Chunk]:
    def _make(
        text: str,
        url: str = "https://example.com/page",
        chunk_index: int = 0,
        title: str = "Example",
        embedding: list[float] | None = None,
    ) -> Chunk:
        return Chunk(
            url=url, chunk_index=chunk_index, text=text, title=title, embedding=embedding
        )

    return _make
