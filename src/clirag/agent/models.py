"""Per-query data passed between the agent stages. Nothing here is persisted."""

from __future__ import annotations

from dataclasses import dataclass, field

from clirag.rag.retriever import SearchResult


@dataclass
class RetrievalPlan:
    analysis: str
    queries: list[str]  # original question first, at most 3, distinct


@dataclass
class ReflectionVerdict:
    needs_refinement: bool
    reason: str
    suggested_query: str | None = None
    error: str | None = None  # set when the critique call failed

    @property
    def assessment(self) -> str:
        return "Needs refinement" if self.needs_refinement else "Answer is adequate"


@dataclass
class Citation:
    """A retrieved chunk offered as evidence, with its 1-based display index."""

    index: int
    text: str
    url: str
    title: str
    chunk_index: int
    score: float

    @classmethod
    def from_result(cls, index: int, result: SearchResult) -> Citation:
        return cls(
            index=index,
            text=result.text,
            url=result.url,
            title=result.title,
            chunk_index=result.chunk_index,
            score=result.score,
        )


@dataclass
class AgenticResponse:
    answer: str
    citations: list[Citation] = field(default_factory=list)
    trace: list[str] = field(default_factory=list)


def cite(results: list[SearchResult], limit: int) -> list[Citation]:
    """Number the first *limit* results from 1."""
    return [Citation.from_result(i + 1, r) for i, r in enumerate(results[:limit])]
