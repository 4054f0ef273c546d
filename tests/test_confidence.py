"""
Tests para rag/query/confidence.py — Scoring de confianza por tiers.

Cubre:
- Conjunto vacío / None → tier none
- Umbrales exactos de cada tier (incluye el mínimo de pasajes de high)
- Similitudes fuera de rango o inválidas
"""

import pytest

from conftest import make_passages
from rag.query.confidence import (
    ConfidenceScorer,
    ConfidenceTier,
    KnowledgePassage,
    tier_rank,
)


@pytest.fixture
def scorer():
    return ConfidenceScorer()


class TestEmptyInput:
    def test_empty_list(self, scorer):
        result = scorer.score([])
        assert result.tier == ConfidenceTier.NONE
        assert result.score == 0.0
        assert result.passage_count == 0

    def test_none(self, scorer):
        assert scorer.score(None).tier == ConfidenceTier.NONE


class TestTiers:
    def test_high_needs_two_passages(self, scorer):
        result = scorer.score(make_passages(0.85, 0.95))
        assert result.tier == ConfidenceTier.HIGH
        assert result.passage_count == 2
        assert result.score == pytest.approx(0.9)

    def test_single_strong_passage_is_medium(self, scorer):
        assert scorer.score(make_passages(0.95)).tier == ConfidenceTier.MEDIUM

    def test_high_boundary_inclusive(self, scorer):
        assert scorer.score(make_passages(0.8, 0.8)).tier == ConfidenceTier.HIGH

    def test_medium_boundary_inclusive(self, scorer):
        assert scorer.score(make_passages(0.6)).tier == ConfidenceTier.MEDIUM

    def test_low_boundary_inclusive(self, scorer):
        assert scorer.score(make_passages(0.4)).tier == ConfidenceTier.LOW

    def test_below_low_is_none(self, scorer):
        result = scorer.score(make_passages(0.39, 0.2))
        assert result.tier == ConfidenceTier.NONE
        assert result.passage_count == 2

    def test_tier_for_is_pure(self, scorer):
        assert scorer.tier_for(0.8, 1) == ConfidenceTier.MEDIUM
        assert scorer.tier_for(0.8, 2) == ConfidenceTier.HIGH
        assert scorer.tier_for(0.0, 10) == ConfidenceTier.NONE

    @pytest.mark.parametrize("count", [1, 2, 3])
    def test_tier_is_monotonic_in_similarity(self, scorer, count):
        ranks = []
        for step in range(101):
            similarity = step / 100
            result = scorer.score(make_passages(*([similarity] * count)))
            ranks.append(tier_rank(result.tier))
        assert ranks == sorted(ranks)
        assert ranks[0] == tier_rank(ConfidenceTier.NONE)


class TestInvalidSimilarities:
    def test_values_are_clamped(self, scorer):
        result = scorer.score(make_passages(1.5, -0.3))
        assert result.score == pytest.approx(0.5)

    def test_missing_or_nan_similarity_counts_as_zero(self, scorer):
        passages = [
            KnowledgePassage(text="a", source_id="a#0", similarity=None),
            KnowledgePassage(text="b", source_id="b#0", similarity=float("nan")),
            KnowledgePassage(text="c", source_id="c#0", similarity=0.9),
        ]
        result = scorer.score(passages)
        assert result.score == pytest.approx(0.3)
        assert result.tier == ConfidenceTier.NONE


class TestHelpers:
    def test_tier_rank_order(self):
        ranks = [tier_rank(t) for t in (
            ConfidenceTier.NONE, ConfidenceTier.LOW, ConfidenceTier.MEDIUM, ConfidenceTier.HIGH
        )]
        assert ranks == sorted(ranks)

    def test_to_dict(self, scorer):
        data = scorer.score(make_passages(0.7)).to_dict()
        assert data["tier"] == "medium"
        assert data["passage_count"] == 1
