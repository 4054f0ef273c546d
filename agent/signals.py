"""
Señales del turno para el motor de escalaciones.

- sentiment: polaridad en [-1, 1] por léxico positivo/negativo
- unresolved_count: turnos seguidos sin respuesta fundamentada
"""

import re
from dataclasses import dataclass
from typing import Dict

_POSITIVE = frozenset(
    {
        "great", "good", "awesome", "love", "thanks", "thank", "helpful",
        "perfect", "excellent", "amazing", "appreciate", "happy",
    }
)
_NEGATIVE = frozenset(
    {
        "bad", "terrible", "angry", "hate", "upset", "awful", "horrible",
        "worst", "frustrated", "useless", "ridiculous", "unacceptable",
        "furious", "disappointed", "complain", "annoyed",
    }
)

_WORD_RE = re.compile(r"[a-z']+")


def sentiment_score(text: str) -> float:
    """(positivos - negativos) / (positivos + negativos); 0.0 si no hay ninguno."""
    words = _WORD_RE.findall((text or "").lower())
    positives = sum(1 for w in words if w in _POSITIVE)
    negatives = sum(1 for w in words if w in _NEGATIVE)
    if not positives and not negatives:
        return 0.0
    return (positives - negatives) / (positives + negatives)


@dataclass(frozen=True)
class TurnSignals:
    sentiment: float = 0.0
    unresolved_count: int = 0

    @classmethod
    def from_message(cls, message: str, unresolved_count: int = 0) -> "TurnSignals":
        return cls(sentiment=sentiment_score(message), unresolved_count=unresolved_count)

    def to_dict(self) -> Dict[str, float]:
        return {"sentiment": self.sentiment, "unresolved_count": self.unresolved_count}
