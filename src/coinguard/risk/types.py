from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional, Union


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"

    @property
    def ordinal(self) -> int:
        return _LEVEL_ORDINALS[self]

    @classmethod
    def parse(cls, value: str) -> "RiskLevel":
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"unknown risk level: {value!r}") from None


_LEVEL_ORDINALS = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 2,
    RiskLevel.HIGH: 3,
    RiskLevel.EXTREME: 4,
}

MarketPhase = Literal["ACCUMULATION", "RISING", "CORRECTION", "PLUMMETING", "STABLE"]


@dataclass(frozen=True, slots=True)
class Available:
    """
    A computed assessment. `score` is always an int in [0, 100].
    `summary` is attached after scoring (see risk.summary) via dataclasses.replace.
    """
    score: int
    level: RiskLevel
    market_phase: MarketPhase = "STABLE"
    summary: Optional[str] = None

    available: Literal[True] = field(default=True, init=False)


@dataclass(frozen=True, slots=True)
class Unavailable:
    """No upstream risk source for the asset. Never compared numerically."""
    reason: str = "no news or social signals"
    summary: Optional[str] = None

    available: Literal[False] = field(default=False, init=False)
    score: None = field(default=None, init=False)
    level: None = field(default=None, init=False)


RiskAssessment = Union[Available, Unavailable]


def assessment_to_dict(a: RiskAssessment) -> dict:
    if isinstance(a, Available):
        return {
            "available": True,
            "score": a.score,
            "level": a.level.value,
            "market_phase": a.market_phase,
            "summary": a.summary,
        }
    return {"available": False, "reason": a.reason, "summary": a.summary}
