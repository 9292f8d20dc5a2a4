"""Helpers shared by the CLI commands: config, database, providers."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from clirag.cli.errors import err_config
from clirag.config import CliragConfig, ConfigError, ensure_global_config, load_config
from clirag.db.connection import Database
from clirag.db.schema import initialize
from clirag.rag.llm_client import Embedder, Generator

console = Console()


def load_settings() -> CliragConfig:
    """Load config or exit 1 with an actionable message.

    Writes the default global config on first run.
    """
    try:
        ensure_global_config()
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def resolve_db(db: Path | None, cfg: CliragConfig) -> Path:
    return db.expanduser() if db is not None else cfg.db_path


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the database and run migrations."""
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def make_embedder(cfg: CliragConfig) -> Embedder:
    return Embedder(cfg.embedding.model)


def make_generator(cfg: CliragConfig) -> Generator:
    return Generator(
        cfg.generation.model,
        max_tokens=cfg.generation.max_tokens,
        temperature=cfg.generation.temperature,
    )
