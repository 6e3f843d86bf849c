"""Context curation: merge every grounding source into one cited text blob.

The model is instructed to follow a fixed source-of-truth hierarchy:
conversation history for demographics and recent user statements, then
evidence chunks and structured facts for clinical values, then document
summaries for background, then long-term memory for continuity.

Evidence is cited as ``[filename, YYYY-MM-DD]`` or ``[filename, undated]``;
the UI and audit tooling parse that exact format.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from healthnav.llm import CURATION_PROMPT, CURATION_SYSTEM_PROMPT, ModelRole, generate
from healthnav.rag.facts import StructuredFact
from healthnav.rag.retriever import Chunk, parse_report_date
from healthnav.summaries import FileSummaryStore, SummaryStore

logger = logging.getLogger(__name__)

UNDATED = "undated"

DEMOGRAPHIC_LINE = re.compile(
    r"^\s*(?:[-*•]\s*)?((?:name|age|gender|sex|weight|height|birth ?date|date of birth|lifestyle)\s*:\s*\S.*)$",
    re.IGNORECASE | re.MULTILINE,
)


def format_citation(chunk: Chunk) -> str:
    """Citation tag for an evidence chunk."""
    filename = chunk.filename or "unknown"
    parsed = parse_report_date(chunk.report_date)
    date = parsed.strftime("%Y-%m-%d") if parsed else UNDATED
    return f"[{filename}, {date}]"


def format_evidence(chunks: list[Chunk]) -> str:
    return "\n\n".join(
        f"<Evidence Chunk {i} {format_citation(c)}>\n{c.content}\n</Evidence Chunk {i}>"
        for i, c in enumerate(chunks, 1)
    )


def format_history(history: list[dict[str, Any]]) -> str:
    return "\n\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in history)


def format_memories(memories: list[str]) -> str:
    return "\n\n".join(
        f"<Recent Conversation Memory {i}>\n{m}\n</Recent Conversation Memory {i}>"
        for i, m in enumerate(memories, 1)
    )


def format_summaries(summaries: list[str]) -> str:
    return "\n\n".join(
        f"<Document Summary {i}>\n{s}\n</Document Summary {i}>"
        for i, s in enumerate(summaries, 1)
    )


def demographic_lines(history: list[dict[str, Any]]) -> list[str]:
    """Literal ``Field: value`` demographic lines stated in the conversation."""
    lines: list[str] = []
    for message in history:
        if message.get("role") not in {"user", "system"}:
            continue
        for match in DEMOGRAPHIC_LINE.finditer(str(message.get("content", ""))):
            line = match.group(1).strip()
            if line not in lines:
                lines.append(line)
    return lines


def ensure_demographics(curated: str, history: list[dict[str, Any]]) -> str:
    """Append demographic lines the model dropped under PATIENT PROFILE."""
    missing = [line for line in demographic_lines(history) if line not in curated]
    if not missing:
        return curated
    return f"{curated.rstrip()}\n\nPATIENT PROFILE:\n" + "\n".join(missing)


def curate_context(
    history: list[dict[str, Any]],
    memories: list[str],
    selected_chunks: list[Chunk],
    facts: list[StructuredFact],
    docs: list[str],
    question: str,
    container_name: str = "",
    summary_store: SummaryStore | None = None,
) -> str:
    """Synthesize the curated context for one turn. Errors propagate."""
    summaries: list[str] = []
    if docs:
        store = summary_store or FileSummaryStore()
        summaries = [store.get(container_name, doc) for doc in docs]

    prompt = CURATION_PROMPT.format(
        question=question,
        history=format_history(history),
        chunks=format_evidence(selected_chunks),
        facts=json.dumps([f.to_dict() for f in facts], ensure_ascii=False, indent=2),
        docs=format_summaries(summaries),
        memories=format_memories(memories),
    )
    curated = generate(prompt, CURATION_SYSTEM_PROMPT, ModelRole.CURATOR)
    logger.debug("Curated context: %d chars from %d chunks", len(curated), len(selected_chunks))
    return ensure_demographics(curated, history)
