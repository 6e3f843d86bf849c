"""Intent classifier: map a question to one of the fixed retrieval plans."""

from __future__ import annotations

import logging

from healthnav.llm import INTENT_PROMPT, INTENT_SYSTEM_PROMPT, ModelRole, generate
from healthnav.rag.plans import RETRIEVAL_PLANS, PlanId, RetrievalPlan

logger = logging.getLogger(__name__)


def parse_intent(raw: str) -> PlanId:
    """Match model output exactly against the known plan ids."""
    token = raw.strip().upper()
    try:
        return PlanId(token)
    except ValueError:
        return PlanId.AMBIGUOUS


def detect_intent(question: str, patient_id: str) -> RetrievalPlan:
    """Classify *question* and return its retrieval plan.

    Any model failure or unrecognised answer falls back to the AMBIGUOUS
    plan, which has the widest recall. No retry.
    """
    try:
        raw = generate(
            INTENT_PROMPT.format(question=question),
            INTENT_SYSTEM_PROMPT,
            ModelRole.INTENT,
        )
        plan_id = parse_intent(raw)
    except Exception:
        logger.exception("Intent detection failed for patient %s", patient_id)
        plan_id = PlanId.AMBIGUOUS

    logger.info("Detected intent %s for patient %s", plan_id.value, patient_id)
    return RETRIEVAL_PLANS[plan_id]
