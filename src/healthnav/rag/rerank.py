"""Deterministic reranking: most recent evidence first, bounded per document."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone

from healthnav.rag.plans import RetrievalPlan
from healthnav.rag.retriever import Chunk, parse_report_date

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _recency_key(chunk: Chunk) -> datetime:
    return parse_report_date(chunk.report_date) or _OLDEST


def rerank(chunks: list[Chunk], plan: RetrievalPlan) -> list[Chunk]:
    """Select at most ``plan.evidence_budget`` chunks.

    Candidates are ordered by report date, newest first, with undated
    chunks last; ties keep their retrieval order. A document contributes
    at most ``plan.max_per_document`` chunks.
    """
    ordered = sorted(chunks, key=_recency_key, reverse=True)
    cap = plan.max_per_document

    selected: list[Chunk] = []
    per_document: Counter[str] = Counter()
    for chunk in ordered:
        if len(selected) >= plan.evidence_budget:
            break
        if per_document[chunk.document_id] >= cap:
            continue
        per_document[chunk.document_id] += 1
        selected.append(chunk)
    return selected
