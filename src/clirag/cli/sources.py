"""clirag list / list-crawled / remove / clear / backfill — corpus lifecycle."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from rich import box
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.rule import Rule
from rich.table import Table

from clirag.cli.common import console, load_settings, make_embedder, open_db, resolve_db
from clirag.cli.errors import err_no_db, err_source_not_found, err_store_failed
from clirag.db.repository import ChunkStore, StoreError
from clirag.ingest.pipeline import IngestPipeline

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the SQLite database (default from config)."),
]


@contextmanager
def _existing_store(db: Path | None) -> Iterator[ChunkStore]:
    """Open an existing database; exit 1 if there is none."""
    path = resolve_db(db, load_settings())
    if not path.exists():
        console.print(err_no_db(str(path)))
        raise typer.Exit(1)
    conn = open_db(path)
    store = ChunkStore(conn)
    try:
        yield store
    finally:
        store.close()
        conn.close()


def list_cmd(db: _DbOption = None) -> None:
    """List all ingested URLs and crawled websites."""
    with _existing_store(db) as store:
        ingested = store.list_ingested()
        crawled = store.list_crawled()

    if not ingested and not crawled:
        console.print("[yellow]No URLs in database[/]")
        return

    console.print(Rule("[cyan]All URLs[/]", style="dim"))
    if ingested:
        console.print("[bold cyan]Ingested URLs:[/]")
        table = Table(box=box.ROUNDED, border_style="grey50")
        table.add_column("URL")
        table.add_column("Title")
        table.add_column("Chunks")
        table.add_column("Ingested At", justify="right")
        for src in ingested:
            table.add_row(
                f"[cyan]{escape(src.url)}[/]",
                f"[dim]{escape(src.title)}[/]",
                f"[yellow]{src.chunk_count}[/]",
                f"[dim]{src.ingested_at}[/]",
            )
        console.print(table)

    if crawled:
        _print_crawled(crawled)


def list_crawled_cmd(db: _DbOption = None) -> None:
    """List all crawled websites."""
    with _existing_store(db) as store:
        crawled = store.list_crawled()

    if not crawled:
        console.print("[yellow]No crawled websites yet[/]")
        return
    _print_crawled(crawled)


def _print_crawled(crawled: list) -> None:
    console.print("[bold cyan]Crawled Websites:[/]")
    table = Table(box=box.ROUNDED, border_style="grey50")
    table.add_column("Base URL")
    table.add_column("Pages")
    table.add_column("Crawled At", justify="right")
    for site in crawled:
        table.add_row(
            f"[cyan]{escape(site.base_url)}[/]",
            f"[yellow]{site.page_count}[/]",
            f"[dim]{site.crawled_at}[/]",
        )
    console.print(table)


def remove_cmd(
    url: Annotated[str, typer.Argument(help="Source URL to remove.")],
    db: _DbOption = None,
) -> None:
    """Remove one source URL and its chunks."""
    with _existing_store(db) as store:
        if store.count_chunks(url) == 0 and not store.is_ingested(url):
            console.print(err_source_not_found(url))
            return
        try:
            removed = store.delete_source(url)
        except StoreError as exc:
            console.print(err_store_failed(str(exc)))
            raise typer.Exit(1) from exc
    console.print(f"[green]✓[/] Deleted {removed} chunks for {escape(url)}")


def clear_cmd(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation prompt."),
    ] = False,
    db: _DbOption = None,
) -> None:
    """Clear all documents and source tracking from the database."""
    if not force and not typer.confirm("Are you sure you want to clear all documents?", default=False):
        console.print("[dim]Cancelled[/]")
        return

    with _existing_store(db) as store:
        try:
            count = store.clear()
        except StoreError as exc:
            console.print(err_store_failed(str(exc)))
            raise typer.Exit(1) from exc
    console.print(f"[green]Cleared {count} chunks from database[/]")


def backfill_cmd(db: _DbOption = None) -> None:
    """Embed stored chunks that were ingested without a vector."""
    cfg = load_settings()
    embedder = make_embedder(cfg)
    if not embedder.available:
        console.print("[yellow]Embedding model not available; nothing to do.[/]")
        raise typer.Exit(1)

    with _existing_store(db) as store:
        missing = store.count_missing_embeddings()
        if missing == 0:
            console.print("[dim]All chunks already have embeddings.[/]")
            return
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Embedding…", total=missing)
            try:
                filled = IngestPipeline(store, embedder).backfill_embeddings(
                    on_progress=lambda done, total: prog.update(task, completed=done)
                )
            except StoreError as exc:
                console.print(err_store_failed(str(exc)))
                raise typer.Exit(1) from exc
    console.print(f"[green]✓[/] Embedded {filled} of {missing} chunks")
