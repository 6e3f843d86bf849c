"""Retriever: patient-scoped nearest-neighbour search over document chunks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from qdrant_client import QdrantClient

from healthnav.config import settings
from healthnav.llm import embed_text
from healthnav.rag.index import get_qdrant_client, patient_filter
from healthnav.rag.plans import RetrievalPlan

logger = logging.getLogger(__name__)


def parse_report_date(value: str | None) -> datetime | None:
    """Parse an ISO report date; ``None`` for missing or unparseable values."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Chunk:
    """A unit of indexed clinical text with its source metadata."""

    id: str
    content: str
    document_id: str
    filename: str | None
    report_date: str | None
    date_status: str | None
    patient_id: str
    document_type: str | None = None
    score: float = 0.0

    @classmethod
    def from_payload(cls, payload: dict[str, Any], score: float = 0.0) -> Chunk:
        return cls(
            id=str(payload.get("chunk_id", "")),
            content=payload.get("content", ""),
            document_id=str(payload.get("document_id", "")),
            filename=payload.get("filename"),
            report_date=payload.get("report_date"),
            date_status=payload.get("date_status"),
            patient_id=str(payload.get("patient_id", "")),
            document_type=payload.get("document_type"),
            score=score,
        )


def build_search_query(question: str, original_question: str | None = None) -> str:
    """Search with both wordings when the question was translated."""
    if original_question and original_question != question:
        return f"{question} {original_question}"
    return question


def retrieve_chunks(
    question: str,
    patient_id: str,
    plan: RetrievalPlan,
    client: QdrantClient | None = None,
    collection: str | None = None,
) -> list[Chunk]:
    """Return up to ``plan.k_candidates`` chunks for *patient_id*.

    Embedding and index errors propagate to the caller.
    """
    client = client or get_qdrant_client()
    collection = collection or settings.chunks_collection

    query_vector = embed_text(question)
    results = client.query_points(
        collection_name=collection,
        query=query_vector,
        query_filter=patient_filter(patient_id),
        limit=plan.k_candidates,
        with_payload=True,
    )

    chunks = [Chunk.from_payload(point.payload or {}, point.score) for point in results.points]
    logger.info(
        "Retrieved %d candidate chunks for patient %s (plan %s)",
        len(chunks), patient_id, plan.id.value,
    )
    return chunks
