from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import aiohttp
import structlog

from coinguard.risk.types import Available, RiskAssessment, RiskLevel
from coinguard.utils.types import SignalSnapshot

log = structlog.get_logger("summary")

MAX_SUMMARY_CHARS = 100

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
SYSTEM_PROMPT = (
    "You are a crypto market analyst. Explain why the asset sits at its risk level and always "
    "mention major events or anomalies. Never mention the numeric score itself, only the "
    "reasons. Keep it under 100 characters, plain and conversational."
)


def clip(text: str, limit: int = MAX_SUMMARY_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


@dataclass(frozen=True, slots=True)
class SummaryContext:
    snapshot: SignalSnapshot
    assessment: RiskAssessment
    symbol: str = ""
    name: str = ""


class SummaryStrategy(Protocol):
    name: str

    async def summarize(self, ctx: SummaryContext) -> Optional[str]:
        """Return text, or None to hand over to the next strategy."""
        ...


# ---------------------------
# Rule-based fallback
# ---------------------------

def _flow_word(netflow: float, heavy: bool) -> str:
    if netflow > 0:
        return "heavy inflow" if heavy else "inflow"
    return "heavy outflow" if heavy else "outflow"


def rule_based_summary(snapshot: SignalSnapshot, assessment: RiskAssessment) -> str:
    """
    Deterministic explanation of the risk level. First matching rule wins.
    Interpolates the actual percentages and never states the score.
    """
    if not isinstance(assessment, Available):
        return "Not enough news or social data to analyze risk right now"

    news = snapshot.news_or_empty
    social = snapshot.social_or_empty
    oc = snapshot.on_chain
    px = snapshot.price_change_24h or 0.0

    news_neg = news.negative_pct
    social_neg = social.negative_pct
    worst_neg = max(news_neg, social_neg)

    big_drop = px < -5
    big_rise = px > 5
    mod_drop = -5 <= px < -2
    mod_rise = 2 < px <= 5
    netflow = oc.netflow_percent if oc is not None else 0.0
    high_netflow = oc is not None and abs(netflow) > 20
    mod_netflow = oc is not None and 10 < abs(netflow) <= 20
    aa = oc.active_address_change if oc is not None else 0.0

    if big_drop:
        if news_neg > 30 or social_neg > 30:
            return (f"Negative news/social at {worst_neg:.1f}% plus a {abs(px):.1f}% price drop "
                    f"lifts risk. Tread carefully")
        if high_netflow:
            return (f"Price down {abs(px):.1f}% with on-chain {abs(netflow):.1f}% "
                    f"{_flow_word(netflow, True)} lifts risk. Short-term correction likely")
        return f"Price down {abs(px):.1f}% lifts risk. Volatility is high, tread carefully"

    if big_rise:
        if news.positives > news.negative_count * 2:
            return (f"Positive news leads ({news.positives} items) with a {px:.1f}% rally. "
                    f"Strong, but watch for overheating")
        if high_netflow and netflow < 0:
            return (f"Price up {px:.1f}% while on-chain shows {abs(netflow):.1f}% heavy outflow. "
                    f"Possibly overbought")
        return f"Price up {px:.1f}% raises volatility. Watch closely before entering"

    if mod_drop:
        if news_neg > 20 or social_neg > 20:
            return (f"Negative sentiment at {worst_neg:.1f}% and a {abs(px):.1f}% dip "
                    f"keep risk at a moderate level")
        return f"Price down {abs(px):.1f}%. Keep watching market conditions"

    if mod_rise:
        if news_neg > 20 or social_neg > 20:
            return f"Price up {px:.1f}% despite {worst_neg:.1f}% negative sentiment. Keep watching"
        return f"Price up {px:.1f}%. A positive sign, but keep watching"

    if high_netflow:
        outlook = "may rise" if netflow > 0 else "may ease"
        return (f"On-chain {abs(netflow):.1f}% {_flow_word(netflow, True)}, so risk {outlook}. "
                f"Watch closely")

    if mod_netflow:
        return f"On-chain {abs(netflow):.1f}% {_flow_word(netflow, False)}. Watch market movement"

    if oc is not None and aa < -15:
        return f"Active addresses down {abs(aa):.1f}%: network activity cooling, interest may fade"
    if oc is not None and aa > 15:
        return f"Active addresses up {aa:.1f}%: network activity is strong, a positive sign"

    level = assessment.level
    if level is RiskLevel.LOW:
        if news_neg < 10 and social_neg < 10:
            return f"Calm news and social flow (negative {worst_neg:.1f}%): stable market, low risk"
        return (f"Low negative sentiment (news {news_neg:.1f}%, social {social_neg:.1f}%) "
                f"and steady price: low risk")
    if level is RiskLevel.MEDIUM:
        if news_neg > 20 or social_neg > 20:
            return (f"Negative sentiment rising (news {news_neg:.1f}%, social {social_neg:.1f}%): "
                    f"moderate risk")
        return "Mixed signals with positives and negatives balanced: moderate risk, keep watching"
    if news_neg > 30 or social_neg > 30:
        return (f"Negative sentiment surging (news {news_neg:.1f}%, social {social_neg:.1f}%): "
                f"high risk")
    return "Heavy negative pressure across signals: high risk, tread carefully"


class RuleBasedSummarizer:
    name = "rules"

    async def summarize(self, ctx: SummaryContext) -> Optional[str]:
        return rule_based_summary(ctx.snapshot, ctx.assessment)


# ---------------------------
# Optional AI-backed strategy
# ---------------------------

def build_prompt(ctx: SummaryContext) -> str:
    snap = ctx.snapshot
    news, social = snap.news_or_empty, snap.social_or_empty
    level = ctx.assessment.level.value if isinstance(ctx.assessment, Available) else "UNKNOWN"
    lines = [
        f"{ctx.name}({ctx.symbol}) current risk level: {level}",
        f"News: {news.total_count} total, {news.positives} positive, {news.negative_count} negative "
        f"({news.negative_pct:.1f}% negative)",
        f"Social: {social.total_count} total, {social.positives} positive, {social.negative_count} "
        f"negative ({social.negative_pct:.1f}% negative)",
    ]
    if news.risk_tags:
        lines.append(f"News risk tags: {', '.join(sorted(news.risk_tags))}")
    if snap.on_chain is not None:
        oc = snap.on_chain
        lines.append(f"On-chain: netflow {oc.netflow_percent:+.1f}%, "
                     f"active addresses {oc.active_address_change:+.1f}%")
    if snap.price_change_24h is not None:
        lines.append(f"Price 24h: {snap.price_change_24h:+.2f}%")
    lines.append(f"Explain why the risk is {level} in under 100 characters without stating the score.")
    return "\n".join(lines)


class OpenAISummarizer:
    """
    Chat-completions call over a shared aiohttp session. Non-200 and malformed
    responses return None; transport errors propagate to the Summarizer chain.
    """
    name = "openai"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str,
        *,
        model: str = "gpt-4o-mini",
        timeout_s: float = 10.0,
        url: str = OPENAI_URL,
    ):
        self._session = session
        self._api_key = api_key
        self.model = model
        self.timeout_s = timeout_s
        self.url = url

    async def summarize(self, ctx: SummaryContext) -> Optional[str]:
        if not isinstance(ctx.assessment, Available):
            return None
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(ctx)},
            ],
            "temperature": 0.7,
            "max_tokens": 120,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        async with self._session.post(
            self.url,
            json=payload,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout_s),
        ) as resp:
            if resp.status != 200:
                log.warning("openai_summary_http_error", status=resp.status, symbol=ctx.symbol)
                return None
            data = await resp.json()
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            log.warning("openai_summary_malformed", symbol=ctx.symbol)
            return None
        text = (text or "").strip()
        return text or None


# ---------------------------
# Strategy chain
# ---------------------------

class Summarizer:
    """
    Tries strategies in priority order; the rule-based strategy always runs last,
    so summarize() always returns a string of at most MAX_SUMMARY_CHARS.
    """
    def __init__(self, strategies: Sequence[SummaryStrategy] = ()):
        chain = [s for s in strategies if not isinstance(s, RuleBasedSummarizer)]
        chain.append(RuleBasedSummarizer())
        self.strategies: list[SummaryStrategy] = chain

    async def summarize(
        self,
        snapshot: SignalSnapshot,
        assessment: RiskAssessment,
        *,
        symbol: str = "",
        name: str = "",
    ) -> str:
        ctx = SummaryContext(snapshot=snapshot, assessment=assessment, symbol=symbol, name=name)
        for strategy in self.strategies:
            try:
                text = await strategy.summarize(ctx)
            except Exception as e:
                log.warning("summary_strategy_failed", strategy=strategy.name, symbol=symbol, err=str(e))
                continue
            if text:
                return clip(text)
        # every strategy failed, rule-based one included
        return clip(rule_based_summary(snapshot, assessment))
