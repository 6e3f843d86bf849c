"""Append-only long-term memory of past question/answer exchanges."""

from __future__ import annotations

import logging
import uuid

from qdrant_client import QdrantClient
from qdrant_client.models import PointStruct

from healthnav.config import settings
from healthnav.llm import embed_text
from healthnav.rag.index import delete_by_source, ensure_collection, get_qdrant_client, patient_filter

logger = logging.getLogger(__name__)

SOURCE_FIELD = "source"


def format_memory(question: str, answer: str, system_time: str) -> str:
    """Render one exchange as a single memory document."""
    return (
        f"<start> This is an interaction between the user and the assistant from {system_time}. "
        f"<user_input> {question} </user_input> <nav_output> {answer} </nav_output> <end>"
    )


class MemoryStore:
    """Memories tagged with the patient id in the ``source`` payload field."""

    def __init__(self, client: QdrantClient | None = None, collection: str | None = None) -> None:
        self.client = client or get_qdrant_client()
        self.collection = collection or settings.memory_collection
        ensure_collection(self.client, self.collection)

    def recall(self, question: str, patient_id: str, k: int | None = None) -> list[str]:
        """Return the *k* memories of *patient_id* closest to *question*."""
        results = self.client.query_points(
            collection_name=self.collection,
            query=embed_text(question),
            query_filter=patient_filter(patient_id, field=SOURCE_FIELD),
            limit=k or settings.memory_k,
            with_payload=True,
        )
        return [point.payload["content"] for point in results.points if point.payload]

    def remember(self, question: str, answer: str, patient_id: str, system_time: str) -> str:
        """Append one exchange. Returns the new memory id."""
        content = format_memory(question, answer, system_time)
        memory_id = str(uuid.uuid4())
        self.client.upsert(
            collection_name=self.collection,
            points=[
                PointStruct(
                    id=memory_id,
                    vector=embed_text(content),
                    payload={
                        "content": content,
                        SOURCE_FIELD: patient_id,
                        "timestamp": system_time,
                    },
                )
            ],
        )
        logger.info("Stored memory %s for patient %s", memory_id, patient_id)
        return memory_id

    def forget(self, patient_id: str) -> None:
        """Delete every memory of one patient."""
        delete_by_source(self.client, self.collection, SOURCE_FIELD, patient_id)
