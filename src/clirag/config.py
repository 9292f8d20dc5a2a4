"""clirag configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not in this module)
  2. Environment variables  (CLIRAG_GENERATION_MODEL, CLIRAG_EMBEDDING_MODEL, CLIRAG_DB)
  3. Per-project clirag.yaml  (current working directory)
  4. Global ~/.clirag/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".clirag"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "clirag.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections. Unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["database", "embedding", "generation", "retrieval", "chunking", "crawl"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """Chunk store location (clirag.yaml: database:)."""

    path: str = "~/.clirag/vectors.db"


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (clirag.yaml: embedding:).

    An empty model disables embeddings; retrieval then runs lexically.
    """

    model: str = "openai/text-embedding-3-small"


@dataclass
class GenerationCfg:
    """LLM generation configuration (clirag.yaml: generation:)."""

    model: str = "openai/gpt-4o-mini"
    max_tokens: int = 512
    temperature: float = 0.7


@dataclass
class RetrievalCfg:
    """Retrieval configuration (clirag.yaml: retrieval:)."""

    top_k: int = 5
    similarity_threshold: float = 0.7


@dataclass
class ChunkingCfg:
    """Chunk size and overlap, in characters (clirag.yaml: chunking:)."""

    chunk_size: int = 500
    overlap: int = 50


@dataclass
class CrawlCfg:
    """Website crawl limits (clirag.yaml: crawl:)."""

    max_pages: int = 50


@dataclass
class CliragConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    crawl: CrawlCfg = field(default_factory=CrawlCfg)

    @property
    def db_path(self) -> Path:
        return Path(self.database.path).expanduser()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: CliragConfig) -> None:
    """Raise ConfigError for out-of-range values."""
    if not -1.0 <= cfg.retrieval.similarity_threshold <= 1.0:
        raise ConfigError(
            f"retrieval.similarity_threshold must be within [-1, 1], "
            f"got {cfg.retrieval.similarity_threshold}"
        )
    if cfg.retrieval.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {cfg.retrieval.top_k}")
    if cfg.chunking.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {cfg.chunking.chunk_size}")
    if not 0 <= cfg.chunking.overlap < cfg.chunking.chunk_size:
        raise ConfigError(
            f"chunking.overlap must be in [0, chunk_size), got {cfg.chunking.overlap}"
        )
    if cfg.crawl.max_pages < 1:
        raise ConfigError(f"crawl.max_pages must be >= 1, got {cfg.crawl.max_pages}")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> CliragConfig:
    """Build a *CliragConfig* from a merged raw YAML dict."""
    cfg = CliragConfig()

    try:
        if "database" in data:
            d = data["database"] or {}
            cfg.database = DatabaseCfg(path=str(d.get("path", cfg.database.path)))

        if "embedding" in data:
            e = data["embedding"] or {}
            cfg.embedding = EmbeddingCfg(model=str(e.get("model", cfg.embedding.model) or ""))

        if "generation" in data:
            g = data["generation"] or {}
            cfg.generation = GenerationCfg(
                model=str(g.get("model", cfg.generation.model) or ""),
                max_tokens=int(g.get("max_tokens", cfg.generation.max_tokens)),
                temperature=float(g.get("temperature", cfg.generation.temperature)),
            )

        if "retrieval" in data:
            r = data["retrieval"] or {}
            cfg.retrieval = RetrievalCfg(
                top_k=int(r.get("top_k", cfg.retrieval.top_k)),
                similarity_threshold=float(
                    r.get("similarity_threshold", cfg.retrieval.similarity_threshold)
                ),
            )

        if "chunking" in data:
            c = data["chunking"] or {}
            cfg.chunking = ChunkingCfg(
                chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
                overlap=int(c.get("overlap", cfg.chunking.overlap)),
            )

        if "crawl" in data:
            cr = data["crawl"] or {}
            cfg.crawl = CrawlCfg(max_pages=int(cr.get("max_pages", cfg.crawl.max_pages)))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: CliragConfig) -> CliragConfig:
    """Apply CLIRAG_* environment variable overrides."""
    if (model := os.environ.get("CLIRAG_GENERATION_MODEL")) is not None:
        cfg.generation.model = model
    if (model := os.environ.get("CLIRAG_EMBEDDING_MODEL")) is not None:
        cfg.embedding.model = model
    if db := os.environ.get("CLIRAG_DB"):
        cfg.database.path = db
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> CliragConfig:
    """Load and return a merged *CliragConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *clirag.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.clirag/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# clirag global configuration — model defaults only.\n"
            "# NEVER store API keys here — use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "database:\n"
            "  path: ~/.clirag/vectors.db\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "generation:\n"
            "  model: openai/gpt-4o-mini\n"
            "  max_tokens: 512\n"
            "  temperature: 0.7\n"
            "\n"
            "retrieval:\n"
            "  top_k: 5\n"
            "  similarity_threshold: 0.7\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
