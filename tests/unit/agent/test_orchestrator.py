"""Tests for the query sessions: single-pass and agentic (plan/reflect/refine)."""

from __future__ import annotations

import threading

import pytest

from clirag.agent.orchestrator import (
    CANCELLED_ANSWER,
    INSUFFICIENT_ANSWER,
    UNAVAILABLE_ANSWER,
    AgenticRAG,
    SessionState,
    SinglePassRAG,
    build_pipeline,
    decompose_query,
)
from clirag.rag.retriever import RetrievalEngine

PLAN = "ANALYSIS: need the creator\nQUERIES: python | guido"
GOOD = "ASSESSMENT: good\nREASON: complete"
REFINE = "ASSESSMENT: needs_refinement\nREASON: missing year\nSUGGESTED_QUERY: released"


@pytest.fixture
def engine(store, make_chunk) -> RetrievalEngine:
    store.put_chunks(
        [
            make_chunk("python is a language by guido", url="https://a.com", chunk_index=0),
            make_chunk("python was released in 1991", url="https://a.com", chunk_index=1),
            make_chunk("cooking pasta takes ten minutes", url="https://b.com", chunk_index=0),
        ]
    )
    return RetrievalEngine(store)


@pytest.fixture
def empty_engine(store) -> RetrievalEngine:
    return RetrievalEngine(store)


# ------------------------------------------------------------------
# Agentic: accept path
# ------------------------------------------------------------------


def test_agentic_accepts_good_answer(engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: Guido made Python.", GOOD])
    response = AgenticRAG(engine, gen, top_k=5).query("who made python")

    assert response.answer == "Guido made Python."
    assert len(gen.prompts) == 3
    assert response.trace[0] == "Query Analysis: need the creator"
    assert response.trace[1] == "Planned searches: who made python, python, guido"
    assert "Reflection: Answer is adequate" in response.trace
    assert response.trace[-1] == "Answer validated - no refinement needed"


def test_agentic_citations_are_numbered_and_capped(engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: ok", GOOD])
    response = AgenticRAG(engine, gen, top_k=1).query("who made python")
    assert [c.index for c in response.citations] == [1]
    assert response.citations[0].url == "https://a.com"


def test_agentic_merged_results_are_distinct(engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: ok", GOOD])
    response = AgenticRAG(engine, gen, top_k=5).query("who made python")
    texts = [c.text for c in response.citations]
    assert len(texts) == len(set(texts))
    assert "cooking pasta takes ten minutes" not in texts


def test_agentic_retrieval_trace_per_query(engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: ok", GOOD])
    response = AgenticRAG(engine, gen).query("who made python")
    retrieval_lines = [t for t in response.trace if t.startswith("Retrieved ")]
    assert retrieval_lines == [
        "Retrieved 2 results for: 'who made python'",
        "Retrieved 2 results for: 'python'",
        "Retrieved 1 results for: 'guido'",
    ]


# ------------------------------------------------------------------
# Agentic: refinement
# ------------------------------------------------------------------


def test_agentic_refines_at_most_once(engine, make_generator):
    # A second REFINE reply is queued; it must never be consumed.
    gen = make_generator([PLAN, "ANSWER: draft", REFINE, "ANSWER: refined", REFINE])
    response = AgenticRAG(engine, gen).query("who made python")

    assert response.answer == "refined"
    assert len(gen.prompts) == 4
    assert "Refinement needed: missing year" in response.trace
    assert "Additional retrieval with: 'released' (1 results)" in response.trace
    assert response.trace[-1] == "Generated refined answer"


def test_refinement_merges_new_evidence(engine, make_generator):
    plan = "ANALYSIS: x\nQUERIES: guido"
    gen = make_generator([plan, "ANSWER: draft", REFINE, "ANSWER: refined"])
    response = AgenticRAG(engine, gen).query("guido")
    texts = {c.text for c in response.citations}
    assert "python was released in 1991" in texts


def test_refinement_without_suggestion_reuses_question(engine, make_generator):
    reflect = "ASSESSMENT: needs_refinement\nREASON: vague"
    gen = make_generator([PLAN, "ANSWER: draft", reflect, "ANSWER: refined"])
    response = AgenticRAG(engine, gen).query("guido")
    assert "Additional retrieval with: 'guido' (1 results)" in response.trace
    assert response.answer == "refined"


def test_state_sequence_with_refinement(engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: draft", REFINE, "ANSWER: refined"])
    states: list[SessionState] = []
    AgenticRAG(engine, gen).query("who made python", on_state=states.append)
    assert states == [
        SessionState.PLANNING,
        SessionState.RETRIEVING,
        SessionState.SYNTHESIZING,
        SessionState.REFLECTING,
        SessionState.REFINING,
        SessionState.DONE,
    ]


def test_state_sequence_accepted(engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: ok", GOOD])
    states: list[SessionState] = []
    AgenticRAG(engine, gen).query("who made python", on_state=states.append)
    assert states[-2:] == [SessionState.ACCEPTED, SessionState.DONE]


def test_state_sequence_insufficient_ends_done(empty_engine, make_generator):
    states: list[SessionState] = []
    AgenticRAG(empty_engine, make_generator([PLAN])).query("anything", on_state=states.append)
    assert states == [SessionState.PLANNING, SessionState.RETRIEVING, SessionState.DONE]


# ------------------------------------------------------------------
# Insufficient evidence
# ------------------------------------------------------------------


def test_agentic_insufficient_skips_synthesis(empty_engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: should not be used"])
    response = AgenticRAG(empty_engine, gen).query("anything")

    assert response.answer == INSUFFICIENT_ANSWER
    assert response.citations == []
    assert len(gen.prompts) == 1  # planner only
    assert response.trace[-1] == "No relevant chunks retrieved - insufficient information"


def test_single_pass_insufficient_makes_no_llm_call(empty_engine, make_generator):
    gen = make_generator(["ANSWER: unused"])
    response = SinglePassRAG(empty_engine, gen).query("anything")
    assert response.answer == INSUFFICIENT_ANSWER
    assert gen.prompts == []


# ------------------------------------------------------------------
# Availability, errors, cancellation
# ------------------------------------------------------------------


def test_unavailable_generator(engine, make_generator):
    gen = make_generator(available=False)
    for pipeline in (AgenticRAG(engine, gen), SinglePassRAG(engine, gen)):
        response = pipeline.query("who made python")
        assert response.answer == UNAVAILABLE_ANSWER
        assert response.trace == ["LLM not available"]
        assert response.citations == []


def test_synthesis_error_degrades_gracefully(engine, make_generator):
    gen = make_generator([PLAN, RuntimeError("boom")])
    response = AgenticRAG(engine, gen).query("who made python")
    assert response.answer == "Error during query processing: boom"
    assert response.trace[-1] == "Error: boom"
    assert response.citations == []


def test_reflection_error_keeps_draft(engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: draft", RuntimeError("reflect failed")])
    response = AgenticRAG(engine, gen).query("who made python")

    assert response.answer == "draft"
    assert response.citations
    assert "Reflection failed: reflect failed" in response.trace
    assert response.trace[-1] == "Answer validated - no refinement needed"
    assert len(gen.prompts) == 3


def test_planner_error_falls_back_to_question(engine, make_generator):
    gen = make_generator([RuntimeError("plan failed"), "ANSWER: ok", GOOD])
    response = AgenticRAG(engine, gen).query("guido")
    assert response.answer == "ok"
    assert response.trace[1] == "Planned searches: guido"


def test_cancel_before_start(engine, make_generator):
    cancel = threading.Event()
    cancel.set()
    gen = make_generator([PLAN])
    response = AgenticRAG(engine, gen).query("who made python", cancel=cancel)
    assert response.answer == CANCELLED_ANSWER
    assert response.trace == ["Cancelled"]
    assert gen.prompts == []


def test_cancel_mid_session_stops_before_next_call(engine, make_generator):
    cancel = threading.Event()
    gen = make_generator([PLAN, "ANSWER: unused"])

    def _on_state(state: SessionState) -> None:
        if state is SessionState.SYNTHESIZING:
            cancel.set()

    response = AgenticRAG(engine, gen).query("who made python", cancel=cancel, on_state=_on_state)
    assert response.answer == CANCELLED_ANSWER
    assert response.trace[-1] == "Cancelled"
    assert len(gen.prompts) == 1


def test_cancel_during_retrieval_skips_remaining_queries(engine, make_generator):
    cancel = threading.Event()
    gen = make_generator([PLAN])

    def _on_state(state: SessionState) -> None:
        if state is SessionState.RETRIEVING:
            cancel.set()

    response = AgenticRAG(engine, gen).query("who made python", cancel=cancel, on_state=_on_state)
    assert response.answer == CANCELLED_ANSWER
    assert not any(line.startswith("Retrieved") for line in response.trace)
    assert len(gen.prompts) == 1


def test_sessions_are_independent(engine, make_generator):
    gen = make_generator([PLAN, "ANSWER: first", GOOD, PLAN, "ANSWER: second", GOOD])
    pipeline = AgenticRAG(engine, gen)
    first = pipeline.query("who made python")
    second = pipeline.query("who made python")
    assert first.answer == "first"
    assert second.answer == "second"
    assert first.trace == second.trace


# ------------------------------------------------------------------
# Single pass
# ------------------------------------------------------------------


def test_single_pass_trace(engine, make_generator):
    gen = make_generator(["ANSWER: Guido."])
    response = SinglePassRAG(engine, gen).query("What did guido create?")

    assert response.answer == "Guido."
    assert len(gen.prompts) == 1
    assert response.trace[0] == "Query analysis"
    assert response.trace[1] == "Decomposed into 2 sub-queries"
    assert response.trace[-1] == "Generated final answer"
    assert any(t.startswith("Selected ") for t in response.trace)


def test_decompose_question_words():
    assert decompose_query("What is the capital of France?") == [
        "What is the capital of France?",
        "what capital france",
    ]


def test_decompose_non_question_is_unchanged():
    assert decompose_query("python history") == ["python history"]


def test_decompose_requires_whole_word():
    assert decompose_query("somewhat python history") == ["somewhat python history"]


def test_build_pipeline_selects_mode(engine, make_generator):
    gen = make_generator()
    assert isinstance(build_pipeline(True, engine, gen), AgenticRAG)
    assert isinstance(build_pipeline(False, engine, gen), SinglePassRAG)
