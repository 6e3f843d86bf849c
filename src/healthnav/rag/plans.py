"""Retrieval plans: candidate pool size and evidence budget per intent."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PlanId(str, Enum):
    FACTUAL = "FACTUAL"
    TREND = "TREND"
    COMPARISON = "COMPARISON"
    EXPLANATION = "EXPLANATION"
    LOCATE = "LOCATE"
    MEDICATION = "MEDICATION"
    AMBIGUOUS = "AMBIGUOUS"


# Trend questions need more distinct documents to show an evolution.
TREND_MAX_PER_DOCUMENT = 2
DEFAULT_MAX_PER_DOCUMENT = 3


@dataclass(frozen=True)
class RetrievalPlan:
    """A named retrieval strategy selected by intent."""

    id: PlanId
    k_candidates: int
    evidence_budget: int
    description: str

    @property
    def max_per_document(self) -> int:
        if self.id is PlanId.TREND:
            return TREND_MAX_PER_DOCUMENT
        return DEFAULT_MAX_PER_DOCUMENT


RETRIEVAL_PLANS: dict[PlanId, RetrievalPlan] = {
    PlanId.FACTUAL: RetrievalPlan(
        PlanId.FACTUAL, 25, 5,
        "Specific clinical data points (cholesterol, dosage, results)",
    ),
    PlanId.TREND: RetrievalPlan(
        PlanId.TREND, 60, 10,
        "Evolution, history or trends over time",
    ),
    PlanId.COMPARISON: RetrievalPlan(
        PlanId.COMPARISON, 50, 8,
        "Comparing periods or states (before/after)",
    ),
    PlanId.EXPLANATION: RetrievalPlan(
        PlanId.EXPLANATION, 25, 6,
        "Medical explanations or interpretations",
    ),
    PlanId.LOCATE: RetrievalPlan(
        PlanId.LOCATE, 30, 6,
        "Finding the exact source or document for a fact",
    ),
    PlanId.MEDICATION: RetrievalPlan(
        PlanId.MEDICATION, 40, 10,
        "Questions about medications, drugs and doses",
    ),
    PlanId.AMBIGUOUS: RetrievalPlan(
        PlanId.AMBIGUOUS, 40, 6,
        "General, broad or unclear questions",
    ),
}


def get_plan(plan_id: PlanId | str) -> RetrievalPlan:
    """Look up a plan by id; unknown ids resolve to AMBIGUOUS."""
    try:
        return RETRIEVAL_PLANS[PlanId(plan_id)]
    except ValueError:
        return RETRIEVAL_PLANS[PlanId.AMBIGUOUS]
