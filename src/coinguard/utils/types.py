from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from coinguard.risk.types import RiskAssessment, Unavailable

# ---- signal primitives (one snapshot per asset per refresh cycle) ----


def _check_counts(negative: int, total: int, positive: Optional[int]) -> None:
    if negative < 0 or total < 0:
        raise ValueError("sentiment counts must be non-negative")
    if negative > total:
        raise ValueError(f"negative_count ({negative}) exceeds total_count ({total})")
    if positive is not None and (positive < 0 or positive > total):
        raise ValueError(f"positive_count ({positive}) out of range for total {total}")


def _ratio(negative: int, total: int) -> float:
    return negative / total if total > 0 else 0.0


@dataclass(frozen=True, slots=True)
class NewsSignals:
    negative_count: int = 0
    total_count: int = 0
    risk_tags: frozenset[str] = frozenset()
    positive_count: Optional[int] = None  # None when the upstream did not report it

    def __post_init__(self):
        _check_counts(self.negative_count, self.total_count, self.positive_count)
        if not isinstance(self.risk_tags, frozenset):
            object.__setattr__(self, "risk_tags", frozenset(self.risk_tags))

    @property
    def negative_ratio(self) -> float:
        return _ratio(self.negative_count, self.total_count)

    @property
    def negative_pct(self) -> float:
        return self.negative_ratio * 100.0

    @property
    def positives(self) -> int:
        if self.positive_count is not None:
            return self.positive_count
        return self.total_count - self.negative_count


@dataclass(frozen=True, slots=True)
class SocialSignals:
    negative_count: int = 0
    total_count: int = 0
    positive_count: Optional[int] = None

    def __post_init__(self):
        _check_counts(self.negative_count, self.total_count, self.positive_count)

    @property
    def negative_ratio(self) -> float:
        return _ratio(self.negative_count, self.total_count)

    @property
    def negative_pct(self) -> float:
        return self.negative_ratio * 100.0

    @property
    def positives(self) -> int:
        if self.positive_count is not None:
            return self.positive_count
        return self.total_count - self.negative_count


@dataclass(frozen=True, slots=True)
class OnChainSignals:
    netflow_percent: float = 0.0         # signed %, inflow > 0
    active_address_change: float = 0.0   # signed %, placeholder heuristic (see ingest.parser)
    volume_percentage: Optional[float] = None


@dataclass(frozen=True, slots=True)
class SignalSnapshot:
    """
    Input bundle for one asset at one point in time.
    A missing news/social block (None) is not the same as an all-zero block.
    """
    news: Optional[NewsSignals] = None
    social: Optional[SocialSignals] = None
    on_chain: Optional[OnChainSignals] = None
    price_change_24h: Optional[float] = None
    anomaly_flags: frozenset[str] = frozenset()

    def __post_init__(self):
        if not isinstance(self.anomaly_flags, frozenset):
            object.__setattr__(self, "anomaly_flags", frozenset(self.anomaly_flags))

    @property
    def has_sentiment(self) -> bool:
        return self.news is not None or self.social is not None

    # partial data reads as zeros
    @property
    def news_or_empty(self) -> NewsSignals:
        return self.news if self.news is not None else NewsSignals()

    @property
    def social_or_empty(self) -> SocialSignals:
        return self.social if self.social is not None else SocialSignals()

    @property
    def on_chain_or_empty(self) -> OnChainSignals:
        return self.on_chain if self.on_chain is not None else OnChainSignals()


# ---- per-asset state consumed by the watch evaluator ----

@dataclass(slots=True)
class AssetState:
    symbol: str
    name: str
    price: Optional[float] = None
    change_24h: Optional[float] = None
    snapshot: Optional[SignalSnapshot] = None
    assessment: RiskAssessment = field(default_factory=Unavailable)

