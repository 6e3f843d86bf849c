"""Structured fact extraction from the selected evidence chunks."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from healthnav.llm import (
    EXTRACTION_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    ModelRole,
    generate,
    strip_code_fences,
)
from healthnav.rag.retriever import Chunk

logger = logging.getLogger(__name__)


class ChatMode(str, Enum):
    """Quality/cost trade-off for the extraction model."""

    FAST = "fast"
    ADVANCED = "advanced"


EXTRACTION_ROLES = {
    ChatMode.FAST: ModelRole.EXTRACTION_FAST,
    ChatMode.ADVANCED: ModelRole.EXTRACTION_ADVANCED,
}


@dataclass(frozen=True)
class StructuredFact:
    fact: str
    value: Any = None
    unit: str | None = None
    date: str | None = None
    source: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StructuredFact:
        return cls(
            fact=str(data.get("fact", "")),
            value=data.get("value"),
            unit=data.get("unit"),
            date=data.get("date"),
            source=str(data.get("source") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def format_chunks_for_extraction(chunks: list[Chunk]) -> str:
    """Label each chunk with its document name and report date."""
    return "\n\n".join(
        f"[Chunk {i}] (Doc: {c.filename or 'unknown'}, Date: {c.report_date or 'undated'})\n{c.content}"
        for i, c in enumerate(chunks, 1)
    )


def parse_facts(text: str) -> list[StructuredFact]:
    """Parse a JSON array of facts, tolerating surrounding code fences."""
    data = json.loads(strip_code_fences(text))
    if isinstance(data, dict):
        data = data.get("facts", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of facts, got {type(data).__name__}")
    return [StructuredFact.from_dict(item) for item in data if isinstance(item, dict)]


def extract_structured_facts(
    chunks: list[Chunk],
    question: str,
    patient_id: str,
    chat_mode: ChatMode = ChatMode.FAST,
) -> list[StructuredFact]:
    """Ask the model for grounded facts; returns ``[]`` on any failure."""
    if not chunks:
        return []

    prompt = EXTRACTION_PROMPT.format(
        context=format_chunks_for_extraction(chunks),
        question=question,
    )
    try:
        raw = generate(prompt, EXTRACTION_SYSTEM_PROMPT, EXTRACTION_ROLES[ChatMode(chat_mode)])
        facts = parse_facts(raw)
    except Exception:
        logger.exception("Structured fact extraction failed for patient %s", patient_id)
        return []

    logger.info("Extracted %d structured facts for patient %s", len(facts), patient_id)
    return facts
