"""
Confidence Scorer - Convierte pasajes recuperados en un tier de confianza.

Este módulo:
1. Define KnowledgePassage (lo que devuelve la búsqueda vectorial)
2. Calcula la similitud promedio de los pasajes
3. Asigna un tier (none/low/medium/high) con umbrales fijos

Es una función pura y total: nunca lanza excepciones.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple


class ConfidenceTier(str, Enum):
    """Buckets de confianza del retrieval"""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# (score mínimo, cantidad mínima de pasajes, tier) — se evalúan en orden
TIER_THRESHOLDS: Tuple[Tuple[float, int, ConfidenceTier], ...] = (
    (0.8, 2, ConfidenceTier.HIGH),
    (0.6, 1, ConfidenceTier.MEDIUM),
    (0.4, 1, ConfidenceTier.LOW),
)

_TIER_RANK = {
    ConfidenceTier.NONE: 0,
    ConfidenceTier.LOW: 1,
    ConfidenceTier.MEDIUM: 2,
    ConfidenceTier.HIGH: 3,
}


@dataclass(frozen=True)
class KnowledgePassage:
    """Pasaje de conocimiento devuelto por el backend vectorial."""

    text: str
    source_id: str
    similarity: float


@dataclass(frozen=True)
class ConfidenceResult:
    """Resultado derivado del scoring (nunca se persiste)."""

    score: float
    tier: ConfidenceTier
    passage_count: int
    mean_similarity: float
    snippet_count: int = 0

    @property
    def source_count(self) -> int:
        """Pasajes vectoriales + snippets del fallback."""
        return self.passage_count + self.snippet_count

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "tier": self.tier.value,
            "passage_count": self.passage_count,
            "snippet_count": self.snippet_count,
            "mean_similarity": self.mean_similarity,
        }


def tier_rank(tier: ConfidenceTier) -> int:
    return _TIER_RANK[tier]


def _as_similarity(value: Optional[float]) -> float:
    try:
        sim = float(value)
    except (TypeError, ValueError):
        return 0.0
    if sim != sim:  # NaN
        return 0.0
    return min(max(sim, 0.0), 1.0)


class ConfidenceScorer:
    """Calcula ConfidenceResult a partir de pasajes rankeados"""

    def __init__(self, thresholds: Sequence[Tuple[float, int, ConfidenceTier]] = None):
        self.thresholds = tuple(thresholds or TIER_THRESHOLDS)

    def tier_for(self, score: float, passage_count: int) -> ConfidenceTier:
        """Tier como función pura de (score, cantidad de pasajes)."""
        for min_score, min_count, tier in self.thresholds:
            if score >= min_score and passage_count >= min_count:
                return tier
        return ConfidenceTier.NONE

    def score(self, passages: Optional[Iterable[KnowledgePassage]]) -> ConfidenceResult:
        """
        Calcula la confianza de un conjunto de pasajes.

        Args:
            passages: Pasajes recuperados (puede ser vacío o None)

        Returns:
            ConfidenceResult con score = similitud promedio
        """
        similarities: List[float] = [
            _as_similarity(getattr(p, "similarity", None)) for p in passages or []
        ]

        if not similarities:
            return ConfidenceResult(
                score=0.0,
                tier=ConfidenceTier.NONE,
                passage_count=0,
                mean_similarity=0.0,
            )

        mean = sum(similarities) / len(similarities)
        count = len(similarities)

        return ConfidenceResult(
            score=mean,
            tier=self.tier_for(mean, count),
            passage_count=count,
            mean_similarity=mean,
        )
