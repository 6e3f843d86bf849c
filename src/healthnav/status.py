"""Push-only status channel addressed by user id.

Delivery is best effort: failures are logged and never raised into the
turn that produced the event.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

GENERATING_RESPONSE = "generating response"
ACTION = "action"
ANSWER_READY = "answer ready"
SUGGESTIONS_PENDING = "suggestions pending"
SUGGESTIONS_READY = "suggestions ready"
ERROR = "error"

STEP = "navigator"


def status_event(status: str, patient_id: str, **fields: Any) -> dict[str, Any]:
    """Build a status payload with the mandatory fields."""
    return {
        "time": datetime.now(timezone.utc).isoformat(),
        "status": status,
        "step": STEP,
        "patientId": patient_id,
        **fields,
    }


class StatusChannel(Protocol):
    def send_to_user(self, user_id: str, message: dict[str, Any]) -> None: ...


class LogStatusChannel:
    """Writes events to the log; used by the CLI and local runs."""

    def send_to_user(self, user_id: str, message: dict[str, Any]) -> None:
        logger.info("status -> %s: %s", user_id, message)


class WebhookStatusChannel:
    """POSTs each event as JSON to a push gateway."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def send_to_user(self, user_id: str, message: dict[str, Any]) -> None:
        try:
            response = httpx.post(
                self.url,
                json={"userId": user_id, "message": message},
                timeout=httpx.Timeout(self.timeout, connect=5.0),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Status delivery to %s failed: %s", user_id, exc)
