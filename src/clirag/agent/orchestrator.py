"""Question-answering sessions over the chunk store.

Two pipelines share the QueryPipeline interface and return AgenticResponse:

  SinglePassRAG: heuristic decomposition → retrieve → synthesize
  AgenticRAG:    plan → multi-hop retrieve → synthesize → reflect
                 → (accept | one refinement round)

A session never raises. Collaborator errors are caught at the session
boundary and returned as a degraded response with the error in the trace.
Refinement is capped at one extra retrieval and one extra synthesis; the
refined answer is not reflected on again.
"""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum

from clirag.agent.models import AgenticResponse, cite
from clirag.agent.planner import QueryPlanner
from clirag.agent.reflector import Reflector
from clirag.agent.synthesizer import Synthesizer
from clirag.rag.llm_client import Generator
from clirag.rag.retriever import RetrievalEngine, SearchResult, merge_results

logger = logging.getLogger(__name__)

INSUFFICIENT_ANSWER = (
    "I don't have enough information to answer this question. "
    "Please ingest relevant documents first."
)
UNAVAILABLE_ANSWER = "Error: LLM is not available. Please configure a model."
CANCELLED_ANSWER = "Query cancelled."

_STOP_WORDS = frozenset(
    {
        "the", "is", "at", "which", "on", "a", "an", "and", "or", "but",
        "in", "with", "to", "for", "of", "as", "by", "from", "this", "that",
    }
)
_QUESTION_WORD_RE = re.compile(r"\b(how|what|why)\b")


class SessionState(str, Enum):
    PLANNING = "planning"
    RETRIEVING = "retrieving"
    SYNTHESIZING = "synthesizing"
    REFLECTING = "reflecting"
    ACCEPTED = "accepted"
    REFINING = "refining"
    DONE = "done"


class SessionCancelled(Exception):
    """Raised inside a session when its cancel event is set."""


class _Session:
    """Mutable state of one query: trace lines, current state, cancellation."""

    def __init__(
        self,
        cancel: threading.Event | None,
        on_state: Callable[[SessionState], None] | None,
    ) -> None:
        self.trace: list[str] = []
        self.state: SessionState | None = None
        self._cancel = cancel
        self._on_state = on_state

    def check(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise SessionCancelled()

    def enter(self, state: SessionState) -> None:
        self.check()
        logger.debug("Session %s -> %s", self.state, state)
        self.state = state
        if self._on_state is not None:
            self._on_state(state)

    def add(self, line: str) -> None:
        self.trace.append(line)


class QueryPipeline(ABC):
    """Shared session handling for both answering modes.

    Args:
        engine: Retrieval engine over the chunk store.
        generator: Text generation capability.
        top_k: Results per query and number of citations returned;
            merged retrieval is capped at ``2 * top_k``.
    """

    def __init__(
        self,
        engine: RetrievalEngine,
        generator: Generator,
        top_k: int = 5,
        synthesizer: Synthesizer | None = None,
    ) -> None:
        self._engine = engine
        self._generator = generator
        self.top_k = top_k
        self._synthesizer = synthesizer or Synthesizer(generator)

    def query(
        self,
        question: str,
        cancel: threading.Event | None = None,
        on_state: Callable[[SessionState], None] | None = None,
    ) -> AgenticResponse:
        """Answer *question*. Always returns a well-formed response.

        Args:
            question: Natural-language question.
            cancel: Optional event; checked between states and before each
                external call.
            on_state: Optional callback invoked on every state transition.
        """
        if not self._generator.available:
            return AgenticResponse(answer=UNAVAILABLE_ANSWER, trace=["LLM not available"])

        session = _Session(cancel, on_state)
        try:
            return self._run(question, session)
        except SessionCancelled:
            session.add("Cancelled")
            return AgenticResponse(answer=CANCELLED_ANSWER, trace=session.trace)
        except Exception as exc:
            logger.warning("Query session failed: %s", exc)
            session.add(f"Error: {exc}")
            return AgenticResponse(
                answer=f"Error during query processing: {exc}", trace=session.trace
            )

    @abstractmethod
    def _run(self, question: str, session: _Session) -> AgenticResponse:
        """Drive one session; may raise, query() converts errors."""

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _retrieve(self, queries: list[str], session: _Session, label: str) -> list[SearchResult]:
        result_lists = self._engine.search_many(
            queries,
            self.top_k,
            before=lambda q: session.check(),
            after=lambda q, results: session.add(f"{label} {len(results)} results for: '{q}'"),
        )
        return merge_results(result_lists, self.top_k * 2)

    def _synthesize(self, question: str, results: list[SearchResult], session: _Session) -> str:
        session.check()
        return self._synthesizer.answer(question, results)

    def _finish(
        self, answer: str, results: list[SearchResult], session: _Session
    ) -> AgenticResponse:
        session.enter(SessionState.DONE)
        return AgenticResponse(
            answer=answer, citations=cite(results, self.top_k), trace=session.trace
        )

    def _insufficient(self, session: _Session) -> AgenticResponse:
        session.add("No relevant chunks retrieved - insufficient information")
        session.enter(SessionState.DONE)
        return AgenticResponse(answer=INSUFFICIENT_ANSWER, trace=session.trace)


class SinglePassRAG(QueryPipeline):
    """Decompose → retrieve → synthesize, without reflection."""

    def _run(self, question: str, session: _Session) -> AgenticResponse:
        session.enter(SessionState.PLANNING)
        session.add("Query analysis")
        queries = decompose_query(question)
        session.add(f"Decomposed into {len(queries)} sub-queries")

        session.enter(SessionState.RETRIEVING)
        results = self._retrieve(queries, session, "Found")
        if not results:
            return self._insufficient(session)
        session.add(f"Selected {len(results)} unique chunks")

        session.enter(SessionState.SYNTHESIZING)
        answer = self._synthesize(question, results, session)
        session.add("Generated final answer")
        return self._finish(answer, results, session)


class AgenticRAG(QueryPipeline):
    """Plan → multi-hop retrieve → synthesize → reflect → optional single refinement."""

    def __init__(
        self,
        engine: RetrievalEngine,
        generator: Generator,
        top_k: int = 5,
        synthesizer: Synthesizer | None = None,
        planner: QueryPlanner | None = None,
        reflector: Reflector | None = None,
    ) -> None:
        super().__init__(engine, generator, top_k=top_k, synthesizer=synthesizer)
        self._planner = planner or QueryPlanner(generator)
        self._reflector = reflector or Reflector(generator)

    def _run(self, question: str, session: _Session) -> AgenticResponse:
        session.enter(SessionState.PLANNING)
        plan = self._planner.plan(question)
        session.add(f"Query Analysis: {plan.analysis}")
        session.add(f"Planned searches: {', '.join(plan.queries)}")

        session.enter(SessionState.RETRIEVING)
        results = self._retrieve(plan.queries, session, "Retrieved")
        if not results:
            return self._insufficient(session)

        session.enter(SessionState.SYNTHESIZING)
        draft = self._synthesize(question, results, session)
        session.add(f"Generated initial answer ({len(draft)} chars)")

        session.enter(SessionState.REFLECTING)
        verdict = self._reflector.reflect(question, draft, results)
        if verdict.error is not None:
            session.add(f"Reflection failed: {verdict.error}")
        session.add(f"Reflection: {verdict.assessment}")

        if not verdict.needs_refinement:
            session.enter(SessionState.ACCEPTED)
            session.add("Answer validated - no refinement needed")
            return self._finish(draft, results, session)

        session.enter(SessionState.REFINING)
        session.add(f"Refinement needed: {verdict.reason}")
        follow_up = verdict.suggested_query or question
        session.check()
        extra = self._engine.search(follow_up, self.top_k)
        session.add(f"Additional retrieval with: '{follow_up}' ({len(extra)} results)")
        results = merge_results([results, extra], self.top_k * 2)

        refined = self._synthesize(question, results, session)
        session.add("Generated refined answer")
        return self._finish(refined, results, session)


def decompose_query(question: str) -> list[str]:
    """Heuristic decomposition: the question plus, for how/what/why questions,
    its content words (longer than 3 characters, stop words removed)."""
    queries = [question]
    lowered = question.lower()
    if _QUESTION_WORD_RE.search(lowered):
        words = [w.strip("?.,!;:\"'()") for w in lowered.split()]
        keywords = [w for w in words if len(w) > 3 and w not in _STOP_WORDS]
        if keywords:
            expanded = " ".join(keywords)
            if expanded != question:
                queries.append(expanded)
    return queries


def build_pipeline(
    agentic: bool,
    engine: RetrievalEngine,
    generator: Generator,
    top_k: int = 5,
) -> QueryPipeline:
    """Choose the answering mode once, at session construction."""
    if agentic:
        return AgenticRAG(engine, generator, top_k=top_k)
    return SinglePassRAG(engine, generator, top_k=top_k)
