"""Tests for healthnav.rag.rerank — recency ordering under a per-document cap."""

from __future__ import annotations

from collections import Counter

from conftest import make_chunk

from healthnav.rag.plans import RETRIEVAL_PLANS, PlanId
from healthnav.rag.rerank import rerank

FACTUAL = RETRIEVAL_PLANS[PlanId.FACTUAL]
TREND = RETRIEVAL_PLANS[PlanId.TREND]


def _ids(chunks):
    return [c.id for c in chunks]


class TestRerank:
    def test_empty_input(self):
        assert rerank([], FACTUAL) == []

    def test_single_document_is_capped(self):
        chunks = [make_chunk(f"c{i}", "doc-1", f"2024-01-{i + 1:02d}") for i in range(10)]
        selected = rerank(chunks, FACTUAL)
        assert len(selected) == 3

    def test_single_document_trend_cap_is_two(self):
        chunks = [make_chunk(f"c{i}", "doc-1") for i in range(10)]
        assert len(rerank(chunks, TREND)) == 2

    def test_budget_limits_output(self):
        chunks = [make_chunk(f"c{i}", f"doc-{i}") for i in range(20)]
        assert len(rerank(chunks, FACTUAL)) == FACTUAL.evidence_budget

    def test_output_never_exceeds_input(self):
        chunks = [make_chunk("a", "doc-1"), make_chunk("b", "doc-2")]
        assert len(rerank(chunks, FACTUAL)) == 2

    def test_newest_first_undated_last(self):
        chunks = [
            make_chunk("old", "d1", "2019-03-01"),
            make_chunk("undated", "d2", None),
            make_chunk("new", "d3", "2025-02-01"),
            make_chunk("mid", "d4", "2022-07-15T08:30:00Z"),
        ]
        assert _ids(rerank(chunks, FACTUAL)) == ["new", "mid", "old", "undated"]

    def test_unparseable_date_sorts_as_undated(self):
        chunks = [
            make_chunk("bad", "d1", "sometime in spring"),
            make_chunk("dated", "d2", "2001-01-01"),
        ]
        assert _ids(rerank(chunks, FACTUAL)) == ["dated", "bad"]

    def test_ties_keep_retrieval_order(self):
        chunks = [make_chunk(f"c{i}", f"doc-{i}", "2024-05-05") for i in range(4)]
        assert _ids(rerank(chunks, FACTUAL)) == ["c0", "c1", "c2", "c3"]

    def test_capped_document_does_not_consume_budget(self):
        crowd = [make_chunk(f"a{i}", "big", f"2025-01-{i + 1:02d}") for i in range(8)]
        others = [make_chunk("b", "other-1", "2020-01-01"), make_chunk("c", "other-2", "2019-01-01")]
        selected = rerank(crowd + others, FACTUAL)
        assert _ids(selected)[-2:] == ["b", "c"]
        assert len(selected) == 5

    def test_per_document_cap_and_budget_hold(self):
        chunks = [
            make_chunk(f"c{i}", f"doc-{i % 3}", f"2023-{(i % 12) + 1:02d}-01")
            for i in range(30)
        ]
        for plan in RETRIEVAL_PLANS.values():
            selected = rerank(chunks, plan)
            assert len(selected) <= min(plan.evidence_budget, len(chunks))
            counts = Counter(c.document_id for c in selected)
            assert max(counts.values()) <= plan.max_per_document

    def test_deterministic(self):
        chunks = [make_chunk(f"c{i}", f"doc-{i % 4}", f"2024-0{(i % 9) + 1}-01") for i in range(25)]
        assert _ids(rerank(chunks, FACTUAL)) == _ids(rerank(list(chunks), FACTUAL))
