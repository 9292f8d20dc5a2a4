"""Tests for clirag ingest / crawl commands."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from clirag.cli.main import app
from clirag.db.connection import Database
from clirag.db.repository import ChunkStore
from clirag.db.schema import initialize
from clirag.ingest.chunker import Document

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _open(path: Path) -> tuple[sqlite3.Connection, ChunkStore]:
    conn = Database(path).connect()
    initialize(conn)
    return conn, ChunkStore(conn)


def _doc(url: str = "https://example.com/page") -> Document:
    return Document(
        url=url,
        title="Example Page",
        text="Rockets burn fuel.\nFuel is stored in tanks.",
    )


def _embedder(make_embedder, available: bool = True):
    return make_embedder(lambda text: [1.0, 0.0], available=available)


# ---------------------------------------------------------------------------
# clirag ingest
# ---------------------------------------------------------------------------


def test_ingest_stores_chunks(tmp_path: Path, make_embedder) -> None:
    db_path = tmp_path / "v.db"
    with (
        patch("clirag.cli.ingest.fetch_document", return_value=_doc()),
        patch("clirag.cli.ingest.make_embedder", return_value=_embedder(make_embedder)),
    ):
        result = runner.invoke(app, ["ingest", "https://example.com/page", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Ingestion Complete" in result.output
    conn, store = _open(db_path)
    assert store.count_chunks("https://example.com/page") == 1
    assert store.count_missing_embeddings() == 0
    assert store.is_ingested("https://example.com/page")
    conn.close()


def test_ingest_already_ingested_skips_fetch(tmp_path: Path) -> None:
    db_path = tmp_path / "v.db"
    conn, store = _open(db_path)
    store.mark_ingested("https://example.com/page", "Example Page", 1)
    conn.close()

    with patch("clirag.cli.ingest.fetch_document") as mock_fetch:
        result = runner.invoke(app, ["ingest", "https://example.com/page", "--db", str(db_path)])

    assert result.exit_code == 0
    assert "already ingested" in result.output
    mock_fetch.assert_not_called()


def test_ingest_fetch_failure_exits_1(tmp_path: Path) -> None:
    with patch(
        "clirag.cli.ingest.fetch_document",
        side_effect=ValueError("Unsupported Content-Type 'application/pdf'"),
    ):
        result = runner.invoke(
            app, ["ingest", "https://example.com/doc", "--db", str(tmp_path / "v.db")]
        )
    assert result.exit_code == 1
    assert "Failed to fetch" in result.output


def test_ingest_without_embeddings_warns_and_stores_text(tmp_path: Path, make_embedder) -> None:
    db_path = tmp_path / "v.db"
    with (
        patch("clirag.cli.ingest.fetch_document", return_value=_doc()),
        patch(
            "clirag.cli.ingest.make_embedder",
            return_value=_embedder(make_embedder, available=False),
        ),
    ):
        result = runner.invoke(app, ["ingest", "https://example.com/page", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Embedding model not available" in result.output
    conn, store = _open(db_path)
    assert store.count_missing_embeddings() == 1
    conn.close()


def test_ingest_dimension_conflict_exits_1(tmp_path: Path, make_embedder) -> None:
    db_path = tmp_path / "v.db"
    with (
        patch("clirag.cli.ingest.fetch_document", return_value=_doc()),
        patch("clirag.cli.ingest.make_embedder", return_value=_embedder(make_embedder)),
    ):
        runner.invoke(app, ["ingest", "https://example.com/page", "--db", str(db_path)])

    wider = make_embedder(lambda text: [1.0, 0.0, 0.0])
    with (
        patch("clirag.cli.ingest.fetch_document", return_value=_doc("https://example.com/other")),
        patch("clirag.cli.ingest.make_embedder", return_value=wider),
    ):
        result = runner.invoke(
            app, ["ingest", "https://example.com/other", "--db", str(db_path)]
        )

    assert result.exit_code == 1
    assert "nothing was stored" in result.output
    conn, store = _open(db_path)
    assert not store.is_ingested("https://example.com/other")
    conn.close()


# ---------------------------------------------------------------------------
# clirag crawl
# ---------------------------------------------------------------------------


def _fake_crawler(documents: list[Document]) -> MagicMock:
    crawler = MagicMock()
    crawler.host = "example.com"
    crawler.crawl.return_value = documents
    return crawler


def test_crawl_ingests_pages_and_marks_site(tmp_path: Path, make_embedder) -> None:
    db_path = tmp_path / "v.db"
    docs = [_doc("https://example.com"), _doc("https://example.com/about")]
    with (
        patch("clirag.cli.ingest.WebCrawler", return_value=_fake_crawler(docs)) as mock_cls,
        patch("clirag.cli.ingest.make_embedder", return_value=_embedder(make_embedder)),
    ):
        result = runner.invoke(
            app, ["crawl", "https://example.com", "--max-pages", "2", "--db", str(db_path)]
        )

    assert result.exit_code == 0, result.output
    mock_cls.assert_called_once_with("https://example.com", max_pages=2)
    assert "Crawled 2 pages" in result.output
    conn, store = _open(db_path)
    assert store.count_chunks() == 2
    assert store.is_crawled("https://example.com")
    assert store.list_crawled()[0].page_count == 2
    conn.close()


def test_crawl_uses_config_max_pages_by_default(tmp_path: Path, make_embedder) -> None:
    with (
        patch("clirag.cli.ingest.WebCrawler", return_value=_fake_crawler([])) as mock_cls,
        patch("clirag.cli.ingest.make_embedder", return_value=_embedder(make_embedder)),
    ):
        runner.invoke(app, ["crawl", "https://example.com", "--db", str(tmp_path / "v.db")])
    mock_cls.assert_called_once_with("https://example.com", max_pages=50)


def test_crawl_already_crawled_site(tmp_path: Path) -> None:
    db_path = tmp_path / "v.db"
    conn, store = _open(db_path)
    store.mark_crawled("https://example.com", 3)
    conn.close()

    with patch("clirag.cli.ingest.WebCrawler") as mock_cls:
        result = runner.invoke(
            app, ["crawl", "https://example.com/docs", "--db", str(db_path)]
        )

    assert result.exit_code == 0
    assert "already crawled" in result.output
    mock_cls.assert_not_called()


def test_crawl_skips_already_ingested_pages(tmp_path: Path, make_embedder) -> None:
    db_path = tmp_path / "v.db"
    conn, store = _open(db_path)
    store.mark_ingested("https://example.com", "Home", 4)
    conn.close()

    docs = [_doc("https://example.com"), _doc("https://example.com/about")]
    with (
        patch("clirag.cli.ingest.WebCrawler", return_value=_fake_crawler(docs)),
        patch("clirag.cli.ingest.make_embedder", return_value=_embedder(make_embedder)),
    ):
        result = runner.invoke(app, ["crawl", "https://example.com", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "Already ingested" in result.output
    conn, store = _open(db_path)
    assert store.count_chunks() == 1
    conn.close()


def test_crawl_no_documents(tmp_path: Path, make_embedder) -> None:
    db_path = tmp_path / "v.db"
    with (
        patch("clirag.cli.ingest.WebCrawler", return_value=_fake_crawler([])),
        patch("clirag.cli.ingest.make_embedder", return_value=_embedder(make_embedder)),
    ):
        result = runner.invoke(app, ["crawl", "https://example.com", "--db", str(db_path)])

    assert result.exit_code == 0
    assert "No documents found" in result.output
    conn, store = _open(db_path)
    assert not store.is_crawled("https://example.com")
    conn.close()
