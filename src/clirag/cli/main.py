"""clirag CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from clirag.cli.common import console
from clirag.cli.ingest import crawl_cmd, ingest_cmd
from clirag.cli.query import query_cmd
from clirag.cli.sources import (
    backfill_cmd,
    clear_cmd,
    list_cmd,
    list_crawled_cmd,
    remove_cmd,
)


def _installed_version() -> str:
    try:
        return importlib.metadata.version("clirag")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"clirag {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


app = typer.Typer(
    name="clirag",
    help=(
        "clirag — local RAG over web pages.\n\n"
        "  clirag ingest URL       Fetch, chunk and embed one page.\n"
        "  clirag query -a         Ask questions with planning and self-reflection."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """clirag — local RAG over web pages."""
    _configure_logging(verbose)


app.command("ingest")(ingest_cmd)
app.command("crawl")(crawl_cmd)
app.command("query")(query_cmd)
app.command("list")(list_cmd)
app.command("list-crawled")(list_crawled_cmd)
app.command("remove")(remove_cmd)
app.command("clear")(clear_cmd)
app.command("backfill")(backfill_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed clirag version."""
    typer.echo(f"clirag {_installed_version()}")


if __name__ == "__main__":
    app()
