"""Query planner: one LLM call turns a question into up to 3 retrieval queries.

Expected reply (parsed leniently, line by line):
    ANALYSIS: <what information is needed>
    QUERIES: <q1> | <q2> | <q3>
"""

from __future__ import annotations

import logging

from clirag.agent.models import RetrievalPlan
from clirag.rag.llm_client import Generator

logger = logging.getLogger(__name__)

MAX_QUERIES = 3
DEFAULT_ANALYSIS = "Analyzing query..."

_PLAN_PROMPT = """\
You are a query planner. Analyze the user's question and create 2-3 search \
queries that will help find relevant information.

Output format:
ANALYSIS: [brief analysis of what information is needed]
QUERIES: [query1] | [query2] | [query3]

Question: {question}"""


class QueryPlanner:
    def __init__(self, generator: Generator, max_tokens: int = 256) -> None:
        self._generator = generator
        self._max_tokens = max_tokens

    def plan(self, question: str) -> RetrievalPlan:
        """Plan retrieval for *question*. Never fails: errors yield a single-query plan."""
        try:
            reply = self._generator.generate(
                _PLAN_PROMPT.format(question=question), max_tokens=self._max_tokens
            )
        except Exception as exc:
            logger.warning("Query planning failed: %s", exc)
            reply = ""
        return parse_plan(reply, question)


def parse_plan(reply: str, question: str) -> RetrievalPlan:
    """Parse a planner reply into a RetrievalPlan.

    A missing ANALYSIS line gets a placeholder; a missing QUERIES line leaves
    just the original question. The question always comes first.
    """
    analysis = ""
    queries = [question]

    for raw in reply.splitlines():
        line = raw.strip()
        upper = line.upper()
        if upper.startswith("ANALYSIS:"):
            analysis = line[len("ANALYSIS:"):].strip()
        elif upper.startswith("QUERIES:"):
            parts = line[len("QUERIES:"):].split("|")
            queries.extend(q for q in (_clean_query(p) for p in parts) if q)

    return RetrievalPlan(
        analysis=analysis or DEFAULT_ANALYSIS,
        queries=list(dict.fromkeys(queries))[:MAX_QUERIES],
    )


def _clean_query(part: str) -> str:
    """Strip whitespace and the placeholder brackets some models echo back."""
    q = part.strip()
    if len(q) > 1 and q[0] == "[" and q[-1] == "]":
        q = q[1:-1].strip()
    return q
