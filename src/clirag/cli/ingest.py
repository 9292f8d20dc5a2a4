"""clirag ingest / crawl — add web pages to the knowledge base.

  clirag ingest https://example.com/docs/page
  clirag crawl https://example.com --max-pages 20
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.rule import Rule

from clirag.cli.common import console, load_settings, make_embedder, open_db, resolve_db
from clirag.cli.errors import (
    err_fetch_failed,
    err_store_failed,
    warn_already_crawled,
    warn_already_ingested,
    warn_no_embeddings,
)
from clirag.db.repository import ChunkStore, StoreError
from clirag.ingest.chunker import Document, DocumentChunker
from clirag.ingest.crawler import WebCrawler, site_root
from clirag.ingest.pipeline import IngestPipeline
from clirag.ingest.web import fetch_document

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the SQLite database (default from config)."),
]


def ingest_cmd(
    url: Annotated[str, typer.Argument(help="The URL to ingest.")],
    db: _DbOption = None,
) -> None:
    """Ingest a single URL into the knowledge base."""
    cfg = load_settings()
    console.print(Rule("[cyan]Ingesting URL[/]", style="dim"))

    conn = open_db(resolve_db(db, cfg))
    store = ChunkStore(conn)
    try:
        if store.is_ingested(url):
            console.print(warn_already_ingested(url))
            return

        with console.status(f"Fetching {url}…"):
            try:
                document = fetch_document(url)
            except (ValueError, RuntimeError) as exc:
                console.print(err_fetch_failed(url, str(exc)))
                raise typer.Exit(1) from exc

        embedder = make_embedder(cfg)
        if not embedder.available:
            console.print(warn_no_embeddings())
        pipeline = IngestPipeline(
            store, embedder, DocumentChunker(cfg.chunking.chunk_size, cfg.chunking.overlap)
        )
        _ingest_with_progress(pipeline, document)
        console.print(Rule("[green]Ingestion Complete[/]", style="dim"))
    finally:
        store.close()
        conn.close()


def crawl_cmd(
    url: Annotated[str, typer.Argument(help="The starting URL to crawl.")],
    max_pages: Annotated[
        int | None,
        typer.Option("--max-pages", "-m", min=1, help="Maximum number of pages to crawl."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Crawl and ingest a website (stays on the same host)."""
    cfg = load_settings()
    limit = max_pages if max_pages is not None else cfg.crawl.max_pages
    console.print(Rule("[cyan]Crawling Website[/]", style="dim"))

    conn = open_db(resolve_db(db, cfg))
    store = ChunkStore(conn)
    try:
        root = site_root(url)
        if store.is_crawled(root):
            console.print(warn_already_crawled(root))
            return

        crawler = WebCrawler(url, max_pages=limit)
        console.print(f"[cyan]Starting crawl of:[/] {crawler.host}  [dim](max {limit} pages)[/]")
        with console.status("Crawling…") as status:
            documents = crawler.crawl(on_page=lambda u: status.update(f"Crawling {u}"))

        if not documents:
            console.print("[yellow]No documents found[/]")
            return

        embedder = make_embedder(cfg)
        if not embedder.available:
            console.print(warn_no_embeddings())
        pipeline = IngestPipeline(
            store, embedder, DocumentChunker(cfg.chunking.chunk_size, cfg.chunking.overlap)
        )

        total_chunks = 0
        for document in documents:
            if store.is_ingested(document.url):
                console.print(f"  [dim]↷ Already ingested: {document.url}[/]")
                continue
            total_chunks += _ingest_with_progress(pipeline, document)

        store.mark_crawled(root, len(documents))
        console.print(
            f"[green]Crawled {len(documents)} pages and created {total_chunks} chunks[/]"
        )
        console.print(Rule("[green]Crawl Complete[/]", style="dim"))
    finally:
        store.close()
        conn.close()


def _ingest_with_progress(pipeline: IngestPipeline, document: Document) -> int:
    """Run the pipeline for one document with a progress bar. Returns chunk count."""
    console.print(f"\n[bold]→ {document.title}[/] [dim]({document.url})[/]")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Embedding…", total=None)

        def _on_chunk(done: int, total: int) -> None:
            prog.update(task, completed=done, total=total)

        try:
            result = pipeline.ingest_document(document, on_progress=_on_chunk)
        except StoreError as exc:
            console.print(err_store_failed(str(exc)))
            raise typer.Exit(1) from exc

    console.print(
        f"  [green]✓[/] {result.chunk_count} chunks stored ({result.embedded} embedded)"
    )
    return result.chunk_count
