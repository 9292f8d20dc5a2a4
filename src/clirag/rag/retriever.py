"""Retrieval engine: dense cosine search with a lexical fallback.

Dense path:
  - the query is embedded with the same embedding model as ingest
  - every stored vector is decoded and scored by cosine similarity
  - results below ``similarity_threshold`` are dropped

Lexical fallback (no embedder, embedding failure, or no dense hits):
  score(d) = |distinct query tokens found in d| / |query tokens|

Multi-query merge groups results by exact chunk text and keeps the
best-scoring representative, so duplicate content collapses to one citation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from clirag.db.models import Chunk
from clirag.db.repository import ChunkStore
from clirag.db.vectors import cosine_similarity
from clirag.rag.llm_client import Embedder

logger = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    """Configuration for the retrieval engine.

    Attributes:
        top_k: Default number of results per query.
        similarity_threshold: Minimum cosine similarity for dense hits.
    """

    top_k: int = 5
    similarity_threshold: float = 0.7


@dataclass
class SearchResult:
    """A retrieved chunk with its relevance score.

    Attributes:
        text: Chunk text.
        url: Source URL of the chunk.
        title: Source document title.
        chunk_index: Ordinal of the chunk within its source.
        score: Cosine similarity (dense) or matched-token ratio (lexical).
    """

    text: str
    url: str
    title: str
    chunk_index: int
    score: float

    @classmethod
    def from_chunk(cls, chunk: Chunk, score: float) -> SearchResult:
        return cls(
            text=chunk.text,
            url=chunk.url,
            title=chunk.title,
            chunk_index=chunk.chunk_index,
            score=score,
        )


class RetrievalEngine:
    """Ranks stored chunks against a query.

    Args:
        store: Open ChunkStore.
        embedder: Embedding capability; when unavailable only lexical search runs.
        config: Threshold and default top-k.
    """

    def __init__(
        self,
        store: ChunkStore,
        embedder: Embedder | None = None,
        config: RetrieverConfig | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.config = config or RetrieverConfig()

    def search(self, query: str, k: int | None = None) -> list[SearchResult]:
        """Return up to *k* results for *query*, best-first. Never raises on an empty corpus."""
        k = self.config.top_k if k is None else k
        if k <= 0:
            return []

        results: list[SearchResult] = []
        if self._embedder is not None and self._embedder.available:
            query_vector = self._embedder.embed(query)
            if query_vector is not None:
                results = self._vector_search(query_vector, k)
            else:
                logger.debug("Query embedding failed; using lexical search")

        if not results:
            results = self._keyword_search(query, k)
        return results

    def search_many(
        self,
        queries: Iterable[str],
        k: int | None = None,
        before: Callable[[str], None] | None = None,
        after: Callable[[str, list[SearchResult]], None] | None = None,
    ) -> list[list[SearchResult]]:
        """Run search() for each query. Result lists are independent of each other.

        Args:
            queries: Queries to run, in order.
            k: Results per query (default from config).
            before: Called with each query before it runs; raising stops the loop.
            after: Called with each query and its results.
        """
        result_lists: list[list[SearchResult]] = []
        for query in queries:
            if before is not None:
                before(query)
            results = self.search(query, k)
            if after is not None:
                after(query, results)
            result_lists.append(results)
        return result_lists

    # ------------------------------------------------------------------
    # Dense path
    # ------------------------------------------------------------------

    def _vector_search(self, query_vector: list[float], k: int) -> list[SearchResult]:
        threshold = self.config.similarity_threshold
        scored: list[SearchResult] = []
        for chunk in self._store.scan_embedded():
            similarity = cosine_similarity(query_vector, chunk.embedding)
            if similarity >= threshold:
                scored.append(SearchResult.from_chunk(chunk, similarity))
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:k]

    # ------------------------------------------------------------------
    # Lexical fallback
    # ------------------------------------------------------------------

    def _keyword_search(self, query: str, k: int) -> list[SearchResult]:
        tokens = tokenize(query)
        if not tokens:
            return []
        scored: list[SearchResult] = []
        for chunk in self._store.scan():
            score = keyword_score(tokens, chunk.text)
            if score > 0:
                scored.append(SearchResult.from_chunk(chunk, score))
        scored.sort(key=lambda r: r.score, reverse=True)
        return scored[:k]


def tokenize(query: str) -> list[str]:
    """Lowercase whitespace tokenization."""
    return query.lower().split()


def keyword_score(tokens: list[str], text: str) -> float:
    """Distinct *tokens* found as substrings of *text*, over the token count.

    A repeated query token is matched once but still counts in the denominator.
    """
    if not tokens:
        return 0.0
    lowered = text.lower()
    matched = sum(1 for t in set(tokens) if t in lowered)
    return matched / len(tokens)


def merge_results(result_lists: Iterable[list[SearchResult]], cap: int) -> list[SearchResult]:
    """Merge results from several queries.

    Groups by exact chunk text, keeps the max-score representative per group,
    re-sorts descending and truncates to *cap*.
    """
    best: dict[str, SearchResult] = {}
    for results in result_lists:
        for result in results:
            current = best.get(result.text)
            if current is None or result.score > current.score:
                best[result.text] = result
    merged = sorted(best.values(), key=lambda r: r.score, reverse=True)
    return merged[: max(cap, 0)]
