from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from coinguard.risk.types import (
    Available,
    MarketPhase,
    RiskAssessment,
    RiskLevel,
    Unavailable,
)
from coinguard.utils.types import NewsSignals, OnChainSignals, SignalSnapshot, SocialSignals

# news risk tag weights; anything not listed weighs DEFAULT_TAG_WEIGHT
TAG_WEIGHTS: dict[str, float] = {
    "hack": 40,
    "exploit": 40,
    "fraud": 35,
    "market_crash": 30,
    "exchange_issue": 25,
    "regulation": 20,
    "lawsuit": 20,
    "technical": 15,
}
DEFAULT_TAG_WEIGHT = 10.0
MAX_TAG_STRENGTH = 40.0

# composite weights
W_NEWS = 0.4
W_SOCIAL = 0.3
W_ONCHAIN = 0.3

HIGH_AT = 70
MEDIUM_AT = 40

ACTION_GUIDES: dict[RiskLevel, str] = {
    RiskLevel.LOW: "Indicators suggest a safe environment. Consider Dollar Cost Averaging (DCA) "
                   "if you believe in the long-term value.",
    RiskLevel.MEDIUM: "Market signals are mixed. It is recommended to observe price action and "
                      "avoid large lump-sum entries.",
    RiskLevel.HIGH: "High risk detected due to negative sentiment or network anomalies. "
                    "Avoid entering now; wait for volatility to settle.",
    RiskLevel.EXTREME: "Extreme danger. Major negative signals triggered. Do not catch a falling knife.",
}


@dataclass(frozen=True, slots=True)
class SubScores:
    news: float
    social: float
    on_chain: float

    @property
    def composite(self) -> float:
        return self.news * W_NEWS + self.social * W_SOCIAL + self.on_chain * W_ONCHAIN


# ---------- sub-scores (each 0..100) ----------

def risk_tag_strength(tags: frozenset[str] | set[str]) -> float:
    """
    Strongest tag seeds the strength; every extra tag adds 10% on top, capped at 40.
    """
    if not tags:
        return 0.0
    max_w = max(TAG_WEIGHTS.get(t, DEFAULT_TAG_WEIGHT) for t in tags)
    return min(MAX_TAG_STRENGTH, max_w * (1.0 + (len(tags) - 1) * 0.1))


def news_score(news: NewsSignals) -> float:
    return news.negative_ratio * 60.0 + risk_tag_strength(news.risk_tags)


def social_score(social: SocialSignals) -> float:
    return social.negative_ratio * 100.0


def netflow_score(netflow_pct: float) -> float:
    # net inflow (toward exchanges) is riskier than outflow
    if netflow_pct >= 30:
        return 100.0
    if netflow_pct >= 20:
        return 80.0
    if netflow_pct >= 10:
        return 60.0
    if netflow_pct >= 0:
        return 40.0
    if netflow_pct >= -10:
        return 30.0
    if netflow_pct >= -20:
        return 20.0
    return 10.0


def active_address_score(change_pct: float) -> float:
    # shrinking activity is riskier than growth
    if change_pct <= -20:
        return 100.0
    if change_pct <= -10:
        return 70.0
    if change_pct <= 0:
        return 50.0
    if change_pct <= 10:
        return 40.0
    if change_pct <= 20:
        return 30.0
    return 20.0


def on_chain_score(oc: OnChainSignals) -> float:
    return netflow_score(oc.netflow_percent) * 0.6 + active_address_score(oc.active_address_change) * 0.4


def sub_scores(snapshot: SignalSnapshot) -> SubScores:
    """Missing categories read as zero counts (partial data)."""
    return SubScores(
        news=news_score(snapshot.news_or_empty),
        social=social_score(snapshot.social_or_empty),
        on_chain=on_chain_score(snapshot.on_chain_or_empty),
    )


# ---------- classification ----------

def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def classify_level(score: int) -> RiskLevel:
    """Base classification. Never returns EXTREME."""
    if score >= HIGH_AT:
        return RiskLevel.HIGH
    if score >= MEDIUM_AT:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def escalate(level: RiskLevel, anomaly_flags: frozenset[str]) -> RiskLevel:
    """HIGH becomes EXTREME only when a collaborator raised an anomaly flag."""
    if level is RiskLevel.HIGH and anomaly_flags:
        return RiskLevel.EXTREME
    return level


def market_phase(change_24h: Optional[float]) -> MarketPhase:
    if change_24h is None:
        return "STABLE"
    if change_24h > 5:
        return "RISING"
    if change_24h < -5:
        return "PLUMMETING"
    if change_24h > 2:
        return "ACCUMULATION"
    if change_24h < -2:
        return "CORRECTION"
    return "STABLE"


def action_guide(assessment: RiskAssessment) -> str:
    if isinstance(assessment, Available):
        return ACTION_GUIDES[assessment.level]
    return "Risk cannot be calculated right now: news and social signals are unavailable."


# ---------- entry point ----------

def score(snapshot: SignalSnapshot) -> RiskAssessment:
    """
    Map a signal snapshot to a RiskAssessment. Pure and deterministic.

    Composite = news*0.4 + social*0.3 + on_chain*0.3, rounded half-up and clamped
    to [0, 100]. Returns Unavailable when neither news nor social is present.
    """
    if not snapshot.has_sentiment:
        return Unavailable()

    subs = sub_scores(snapshot)
    value = min(100, max(0, round_half_up(subs.composite)))
    level = escalate(classify_level(value), snapshot.anomaly_flags)
    return Available(
        score=value,
        level=level,
        market_phase=market_phase(snapshot.price_change_24h),
    )
