"""clirag query — ask questions over the knowledge base.

Interactive by default (type 'exit' or 'quit' to leave); ``--question``
answers a single question and exits.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table

from clirag.agent.models import AgenticResponse
from clirag.agent.orchestrator import QueryPipeline, SessionState, build_pipeline
from clirag.cli.common import (
    console,
    load_settings,
    make_embedder,
    make_generator,
    open_db,
    resolve_db,
)
from clirag.cli.errors import err_no_api_key
from clirag.db.repository import ChunkStore
from clirag.rag.retriever import RetrievalEngine, RetrieverConfig

_EXIT_WORDS = {"exit", "quit"}
_MAX_SOURCES_SHOWN = 5

_STEP_LABELS = {
    SessionState.PLANNING: "Analyzing query and planning…",
    SessionState.RETRIEVING: "Multi-hop retrieval…",
    SessionState.SYNTHESIZING: "Generating answer…",
    SessionState.REFLECTING: "Self-reflection…",
    SessionState.ACCEPTED: "Answer validated ✓",
    SessionState.REFINING: "Refining answer…",
}


def query_cmd(
    agentic: Annotated[
        bool,
        typer.Option(
            "--agentic",
            "-a",
            help="Agentic mode: query planning, multi-hop retrieval and self-reflection.",
        ),
    ] = False,
    show_reasoning: Annotated[
        bool,
        typer.Option("--show-reasoning", "-r", help="Print each step as it runs (agentic only)."),
    ] = False,
    question: Annotated[
        str | None,
        typer.Option("--question", "-q", help="Answer one question and exit."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the SQLite database (default from config)."),
    ] = None,
) -> None:
    """Ask questions about the ingested documents."""
    cfg = load_settings()
    generator = make_generator(cfg)
    if not generator.available:
        console.print(err_no_api_key(cfg.generation.model or "(none)"))
        raise typer.Exit(1)

    conn = open_db(resolve_db(db, cfg))
    store = ChunkStore(conn)
    try:
        engine = RetrievalEngine(
            store,
            make_embedder(cfg),
            RetrieverConfig(
                top_k=cfg.retrieval.top_k,
                similarity_threshold=cfg.retrieval.similarity_threshold,
            ),
        )
        pipeline = build_pipeline(agentic, engine, generator, top_k=cfg.retrieval.top_k)
        verbose = agentic and show_reasoning

        if question is not None:
            _answer(pipeline, question, agentic, verbose)
            return

        mode = "Agentic RAG Mode" if agentic else "Standard RAG Mode"
        console.print(Rule(f"[cyan]Interactive Query Mode - {mode}[/]", style="dim"))
        console.print("[dim]Type 'exit' or 'quit' to leave[/]")
        while True:
            try:
                line = console.input("\n[cyan]>[/] ").strip()
            except EOFError:
                break
            if not line:
                continue
            if line.lower() in _EXIT_WORDS:
                console.print("[dim]Goodbye![/]")
                break
            _answer(pipeline, line, agentic, verbose)
    finally:
        store.close()
        conn.close()


def _answer(pipeline: QueryPipeline, question: str, agentic: bool, verbose: bool) -> None:
    def _on_state(state: SessionState) -> None:
        label = _STEP_LABELS.get(state)
        if verbose and label:
            console.print(f"[cyan]{label}[/]")

    with console.status("Thinking…"):
        response = pipeline.query(question, on_state=_on_state)
    render_response(response, show_trace=agentic)


def render_response(response: AgenticResponse, show_trace: bool) -> None:
    console.print(
        Panel(
            escape(response.answer),
            title="[green]Answer[/]",
            box=box.ROUNDED,
            padding=(1, 1),
            expand=True,
        )
    )

    if response.citations:
        console.print("\n[dim]Sources:[/]")
        table = Table(box=box.ROUNDED, border_style="grey50")
        table.add_column("#")
        table.add_column("Title")
        table.add_column("Score", justify="right")
        for citation in response.citations[:_MAX_SOURCES_SHOWN]:
            table.add_row(
                f"[cyan]{citation.index}[/]",
                f"[dim]{escape(citation.title)}[/]",
                f"[yellow]{citation.score:.2f}[/]",
            )
        console.print(table)

    if show_trace and response.trace:
        console.print(Rule("[cyan]Reasoning Process[/]", style="dim"))
        for step in response.trace:
            console.print(f"[dim]→ {escape(step)}[/]")
