"""Qdrant access shared by the chunk index and the memory index."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PointStruct,
    VectorParams,
)

from healthnav.config import settings

logger = logging.getLogger(__name__)

# Payload field names in the chunk collection
PATIENT_FIELD = "patient_id"
DOCUMENT_FIELD = "document_id"


def get_qdrant_client() -> QdrantClient:
    """Create a Qdrant client from settings."""
    if settings.qdrant_url == ":memory:":
        return QdrantClient(":memory:")
    return QdrantClient(url=settings.qdrant_url)


def ensure_collection(
    client: QdrantClient,
    collection: str,
    vector_size: int | None = None,
) -> None:
    """Create the Qdrant collection if it doesn't exist."""
    if not client.collection_exists(collection):
        logger.info("Creating collection %s", collection)
        client.create_collection(
            collection_name=collection,
            vectors_config=VectorParams(
                size=vector_size or settings.embedding_dim,
                distance=Distance.COSINE,
            ),
        )


def match_filter(**fields: str) -> Filter:
    """Build an equality filter over one or more payload fields."""
    return Filter(
        must=[
            FieldCondition(key=key, match=MatchValue(value=value))
            for key, value in fields.items()
        ]
    )


def patient_filter(patient_id: str, field: str = PATIENT_FIELD) -> Filter:
    """Mandatory tenant-isolation filter for every patient-scoped query."""
    if not patient_id:
        raise ValueError("A patient id is required for scoped index access")
    return match_filter(**{field: patient_id})


def point_id(key: str) -> str:
    """Stable Qdrant point id for an arbitrary string key."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, key))


def index_chunks(
    client: QdrantClient,
    chunks: list[dict[str, Any]],
    collection: str | None = None,
) -> int:
    """Upsert embedded chunk records. Returns the number of points stored.

    Each record carries ``id``, ``content``, ``embedding`` and the chunk
    metadata (``patient_id``, ``document_id``, ``filename``, ``report_date``,
    ``date_status``, ``document_type``).
    """
    collection = collection or settings.chunks_collection
    ensure_collection(client, collection, vector_size=len(chunks[0]["embedding"]) if chunks else None)

    points = [
        PointStruct(
            id=point_id(str(chunk["id"])),
            vector=chunk["embedding"],
            payload={
                "chunk_id": str(chunk["id"]),
                "content": chunk["content"],
                PATIENT_FIELD: chunk["patient_id"],
                DOCUMENT_FIELD: chunk["document_id"],
                "filename": chunk.get("filename"),
                "report_date": chunk.get("report_date"),
                "date_status": chunk.get("date_status", "missing"),
                "document_type": chunk.get("document_type"),
            },
        )
        for chunk in chunks
    ]
    if points:
        client.upsert(collection_name=collection, points=points)
    return len(points)


def reindex_document_metadata(
    client: QdrantClient,
    document_id: str,
    patient_id: str,
    report_date: str | None,
    date_status: str,
    collection: str | None = None,
) -> bool:
    """Rewrite the report date of every chunk of one patient's document.

    Returns ``False`` when the document has no indexed chunks.
    """
    collection = collection or settings.chunks_collection
    selector = match_filter(**{DOCUMENT_FIELD: document_id, PATIENT_FIELD: patient_id})
    found = client.count(collection_name=collection, count_filter=selector, exact=True).count
    if not found:
        return False

    client.set_payload(
        collection_name=collection,
        payload={"report_date": report_date, "date_status": date_status},
        points=selector,
    )
    logger.info("Reindexed %d chunks of document %s", found, document_id)
    return True


def delete_by_source(client: QdrantClient, collection: str, field: str, value: str) -> None:
    """Delete every point whose *field* equals *value*."""
    client.delete(
        collection_name=collection,
        points_selector=FilterSelector(filter=patient_filter(value, field=field)),
    )
