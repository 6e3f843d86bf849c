"""Entry points that run a turn for the outer (HTTP, CLI) surface."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any

from qdrant_client import QdrantClient

from healthnav.agent.graph import agent, run_config
from healthnav.agent.state import TurnConfig
from healthnav.background import run_detached
from healthnav.config import settings
from healthnav.rag.index import get_qdrant_client, reindex_document_metadata
from healthnav.status import ERROR, LogStatusChannel, StatusChannel, WebhookStatusChannel, status_event

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong while answering your question. Please try again."


def default_status_channel() -> StatusChannel:
    if settings.status_webhook_url:
        return WebhookStatusChannel(settings.status_webhook_url)
    return LogStatusChannel()


def make_turn_config(
    patient_id: str,
    user_id: str,
    *,
    status: StatusChannel | None = None,
    history: list[dict[str, Any]] | None = None,
    docs: list[str] | None = None,
    user_lang: str = "en",
    container_name: str = "",
    original_question: str = "",
    chat_mode: str = "fast",
) -> TurnConfig:
    return TurnConfig(
        patient_id=patient_id,
        user_id=user_id,
        user_lang=user_lang,
        container_name=container_name,
        system_time=datetime.now(timezone.utc).isoformat(),
        history=history or [],
        docs=docs or [],
        original_question=original_question,
        chat_mode=chat_mode,
        status=status or default_status_channel(),
    )


def run_turn(question: str, config: TurnConfig) -> str:
    """Run one turn synchronously and return the final answer text."""
    result = agent.invoke(
        {"messages": [{"role": "user", "content": question}]},
        run_config(config),
    )
    return result["messages"][-1]["content"]


def _run_and_report(question: str, config: TurnConfig) -> str:
    try:
        return run_turn(question, config)
    except Exception:
        logger.exception("Turn failed for patient %s", config.get("patient_id"))
        config["status"].send_to_user(
            config["user_id"],
            status_event(ERROR, config["patient_id"], message=GENERIC_ERROR),
        )
        raise


def ask(question: str, config: TurnConfig) -> Future:
    """Acknowledge immediately; the answer arrives on the status channel."""
    return run_detached(_run_and_report, question, config)


def correct_report_date(
    document_id: str,
    patient_id: str,
    report_date: str | None,
    date_status: str = "confirmed",
    client: QdrantClient | None = None,
) -> bool:
    """Apply a user-corrected report date to every indexed chunk of a document.

    Returns ``False`` when the document has no chunks for *patient_id*.
    """
    updated = reindex_document_metadata(
        client or get_qdrant_client(), document_id, patient_id, report_date, date_status
    )
    if not updated:
        logger.warning("No indexed chunks for document %s of patient %s", document_id, patient_id)
    return updated
