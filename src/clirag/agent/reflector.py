"""Self-critique of a draft answer.

Expected reply:
    ASSESSMENT: good | needs_refinement
    REASON: <why>
    SUGGESTED_QUERY: <optional follow-up search>

The verdict is refine when ``needs_refinement`` appears anywhere in the reply
(case-insensitive), so replies that drift from the format still count.
"""

from __future__ import annotations

import logging

from clirag.agent.models import ReflectionVerdict
from clirag.rag.llm_client import Generator
from clirag.rag.retriever import SearchResult

logger = logging.getLogger(__name__)

MAX_ANSWER_CHARS = 500
DEFAULT_REASON = "Answer quality check complete"
REFINE_TOKEN = "needs_refinement"

# Placeholder values models write instead of leaving SUGGESTED_QUERY empty.
_NO_QUERY = frozenset({"", "none", "n/a", "na", "-"})

_REFLECT_PROMPT = """\
Evaluate if this answer adequately addresses the question. Be critical.

Output format:
ASSESSMENT: [good/needs_refinement]
REASON: [why it's good or what's missing]
SUGGESTED_QUERY: [optional - a new search query if more info is needed]

Question: {question}

Answer: {answer}

Evaluate this answer:"""


class Reflector:
    def __init__(self, generator: Generator, max_tokens: int = 200) -> None:
        self._generator = generator
        self._max_tokens = max_tokens

    def reflect(
        self, question: str, answer: str, results: list[SearchResult]
    ) -> ReflectionVerdict:
        """Judge *answer*. Never fails: a provider error accepts the draft.

        *results* is accepted for interface symmetry with the synthesizer;
        the critique is made from the question and answer alone.
        """
        prompt = _REFLECT_PROMPT.format(
            question=question, answer=answer[:MAX_ANSWER_CHARS]
        )
        try:
            reply = self._generator.generate(prompt, max_tokens=self._max_tokens)
        except Exception as exc:
            logger.warning("Answer reflection failed: %s", exc)
            return ReflectionVerdict(
                needs_refinement=False, reason=DEFAULT_REASON, error=str(exc)
            )
        return parse_reflection(reply)


def parse_reflection(reply: str) -> ReflectionVerdict:
    needs_refinement = REFINE_TOKEN in reply.lower()
    reason = ""
    suggested: str | None = None

    for raw in reply.splitlines():
        line = raw.strip()
        upper = line.upper()
        if upper.startswith("REASON:"):
            reason = line[len("REASON:"):].strip()
        elif upper.startswith("SUGGESTED_QUERY:"):
            suggested = line[len("SUGGESTED_QUERY:"):].strip().strip("[]").strip()
            if suggested.lower() in _NO_QUERY:
                suggested = None

    return ReflectionVerdict(
        needs_refinement=needs_refinement,
        reason=reason or DEFAULT_REASON,
        suggested_query=suggested,
    )
