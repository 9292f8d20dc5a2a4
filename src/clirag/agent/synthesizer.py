"""Answer synthesis from the top retrieved chunks."""

from __future__ import annotations

import re

from clirag.rag.llm_client import Generator
from clirag.rag.retriever import SearchResult

# Only the best few chunks go into the prompt to bound its size.
CONTEXT_CHUNKS = 3
ANSWER_MARKER = "ANSWER:"

_MARKER_RE = re.compile(re.escape(ANSWER_MARKER), re.IGNORECASE)

_ANSWER_PROMPT = """\
You are a helpful assistant. Read the context and answer the question using \
only the information it contains. Start your response with 'ANSWER:' followed \
by your answer.

Context:
{context}

Question: {question}"""


class Synthesizer:
    def __init__(self, generator: Generator) -> None:
        self._generator = generator

    def answer(self, question: str, results: list[SearchResult]) -> str:
        """Generate a grounded answer from the first CONTEXT_CHUNKS results.

        Provider errors propagate to the caller.
        """
        prompt = build_prompt(question, results)
        return extract_answer(self._generator.generate(prompt))


def build_prompt(question: str, results: list[SearchResult]) -> str:
    context = "\n\n".join(r.text for r in results[:CONTEXT_CHUNKS])
    return _ANSWER_PROMPT.format(context=context, question=question)


def extract_answer(reply: str) -> str:
    """Drop everything up to and including the first ANSWER: marker.

    Without a marker the reply is returned verbatim.
    """
    match = _MARKER_RE.search(reply)
    if match is None:
        return reply
    return reply[match.end():].strip()
