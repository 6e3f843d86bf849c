"""Shared fixtures and markers for the test suite."""

from __future__ import annotations

import hashlib
from concurrent.futures import Future
from typing import Any
from unittest.mock import patch

import pytest
from qdrant_client import QdrantClient

from healthnav.rag.retriever import Chunk

EMBEDDING_DIM = 768
PATIENT_ID = "patient-001"
USER_ID = "user-001"


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "integration: marks tests that require live services (Ollama, Qdrant, etc.)",
    )


def is_ollama_available() -> bool:
    """Check if the Ollama server is reachable and has a model."""
    try:
        import ollama

        models = ollama.list().get("models", [])
        return len(models) > 0
    except Exception:
        return False


def fake_embedding(text: str) -> list[float]:
    """Deterministic fake embedding based on text hash."""
    h = hashlib.sha256(text.encode()).hexdigest()
    values = [int(h[i % len(h)], 16) / 15.0 * 2 - 1 for i in range(EMBEDDING_DIM)]
    values[0] += 0.01  # never an all-zero vector
    return values


class RecordingStatusChannel:
    """Collects every pushed status event in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def send_to_user(self, user_id: str, message: dict[str, Any]) -> None:
        self.events.append((user_id, message))

    @property
    def statuses(self) -> list[str]:
        return [message["status"] for _, message in self.events]


def make_chunk(
    chunk_id: str,
    document_id: str = "doc-1",
    report_date: str | None = "2024-01-01",
    filename: str | None = None,
    content: str = "",
    patient_id: str = PATIENT_ID,
) -> Chunk:
    return Chunk(
        id=chunk_id,
        content=content or f"content of {chunk_id}",
        document_id=document_id,
        filename=filename if filename is not None else f"{document_id}.pdf",
        report_date=report_date,
        date_status="confirmed" if report_date else "missing",
        patient_id=patient_id,
    )


def _inline(fn, *args, **kwargs) -> Future:
    future: Future = Future()
    try:
        future.set_result(fn(*args, **kwargs))
    except Exception as exc:  # pragma: no cover - mirrors the pool behaviour
        future.set_exception(exc)
    return future


@pytest.fixture
def inline_detached():
    """Run detached trailing work synchronously."""
    with patch("healthnav.agent.nodes.run_detached", side_effect=_inline) as mock:
        yield mock


@pytest.fixture
def status_channel() -> RecordingStatusChannel:
    return RecordingStatusChannel()


@pytest.fixture
def turn_config(status_channel: RecordingStatusChannel) -> dict[str, Any]:
    return {
        "patient_id": PATIENT_ID,
        "user_id": USER_ID,
        "user_lang": "en",
        "container_name": "container-001",
        "system_time": "2025-06-01T10:00:00+00:00",
        "history": [],
        "docs": [],
        "chat_mode": "fast",
        "status": status_channel,
    }


@pytest.fixture
def run_cfg(turn_config: dict[str, Any]) -> dict[str, Any]:
    """Node-level run config; mutations of ``turn_config`` stay visible."""
    return {"configurable": turn_config}


@pytest.fixture
def qdrant_memory() -> QdrantClient:
    """An in-memory Qdrant client."""
    return QdrantClient(":memory:")


@pytest.fixture
def fake_embed():
    """Patch every embedding call site with the deterministic fake."""
    with (
        patch("healthnav.rag.retriever.embed_text", side_effect=fake_embedding),
        patch("healthnav.memory.embed_text", side_effect=fake_embedding),
    ):
        yield
