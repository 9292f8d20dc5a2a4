"""clirag rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from clirag.cli.errors import err_no_db
    console.print(err_no_db(".clirag/vectors.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from clirag.rag.llm_client import api_key_env, provider_of


def err_no_api_key(model: str) -> str:
    """No API key for the provider of *model*."""
    env_var = api_key_env(model)
    if env_var is None:
        hint = f"  Check that the {escape(provider_of(model))} server is running and reachable.\n"
    else:
        hint = f"  Set:  export {env_var}=sk-...\n"
    return (
        f"[red]Error:[/] LLM is not available (model '{escape(model)}').\n"
        f"{hint}"
        "  Or configure generation.model in clirag.yaml (e.g. ollama/llama3)."
    )


def err_no_db(db_path: str) -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{escape(db_path)}'.\n"
        "  Run:  clirag ingest <url>"
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration.\n  {escape(message)}\n"
        "  Fix clirag.yaml or ~/.clirag/config.yaml."
    )


def err_fetch_failed(url: str, reason: str) -> str:
    return (
        f"[red]Error:[/] Failed to fetch '{escape(url)}'.\n"
        f"  {escape(reason)}\n"
        "  Check the URL is public and serves HTML or plain text."
    )


def err_store_failed(reason: str) -> str:
    return (
        f"[red]Error:[/] Could not write to the database; nothing was stored.\n"
        f"  {escape(reason)}\n"
        "  If the embedding model changed, run:  clirag clear --force  and re-ingest."
    )


def warn_already_ingested(url: str) -> str:
    return (
        f"[yellow]URL already ingested:[/] {escape(url)}\n"
        "  Use 'clirag list' to see all ingested URLs, or 'clirag remove' to re-ingest."
    )


def warn_already_crawled(base_url: str) -> str:
    return (
        f"[yellow]Site already crawled:[/] {escape(base_url)}\n"
        "  Use 'clirag list-crawled' to see all crawled sites."
    )


def warn_no_embeddings() -> str:
    return (
        "[yellow]⚠[/] Embedding model not available — chunks stored without vectors.\n"
        "  Keyword search will be used. Run 'clirag backfill' once embeddings are configured."
    )


def err_source_not_found(url: str) -> str:
    return (
        f"[yellow]Source not found:[/] '{escape(url)}' is not in the knowledge base.\n"
        "  Run:  clirag list  to see all ingested sources."
    )
