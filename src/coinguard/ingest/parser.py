from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from coinguard.utils.types import NewsSignals, OnChainSignals, SocialSignals

# Upstream market data carries no active-address history. Until a real source
# exists the change is measured against this fixed baseline, which yields 0%
# unless the payload reports `active_addresses`.
BASELINE_ACTIVE_ADDRESSES = 10_000


@dataclass(frozen=True, slots=True)
class Ticker:
    symbol: str
    price: float
    change_24h: float  # percent


def _as_int(v) -> int:
    if v is None or v == "":
        return 0
    return int(float(v))


def _as_float(v) -> float:
    if isinstance(v, bool) or v is None:
        raise ValueError(f"not a number: {v!r}")
    return float(v)


def _sentiment_counts(data) -> tuple[int, int, Optional[int]]:
    """
    Shape: {"total": 120, "stats": [{"sentiment": "negative", "count": "30", ...}, ...]}
    Counts may arrive as strings. Returns (negative, total, positive).
    """
    if not isinstance(data, dict) or not isinstance(data.get("stats"), list):
        raise ValueError("sentiment stats payload must be an object with a 'stats' list")
    by_label: dict[str, int] = {}
    for row in data["stats"]:
        if not isinstance(row, dict):
            continue
        label = row.get("sentiment")
        if label is None:
            continue
        by_label[str(label).lower()] = by_label.get(str(label).lower(), 0) + _as_int(row.get("count"))
    total = _as_int(data.get("total"))
    if total == 0 and by_label:
        total = sum(by_label.values())
    negative = min(by_label.get("negative", 0), total)
    positive = by_label.get("positive")
    if positive is not None:
        positive = min(positive, total)
    return negative, total, positive


def parse_news_stats(data) -> NewsSignals:
    negative, total, positive = _sentiment_counts(data)
    tags = data.get("risk_tags") or data.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]
    return NewsSignals(
        negative_count=negative,
        total_count=total,
        risk_tags=frozenset(str(t).strip().lower() for t in tags if str(t).strip()),
        positive_count=positive,
    )


def parse_social_stats(data) -> SocialSignals:
    negative, total, positive = _sentiment_counts(data)
    return SocialSignals(negative_count=negative, total_count=total, positive_count=positive)


def find_market_entry(payload, symbol: str) -> Optional[dict]:
    """Pick the row for `symbol` from {"data": [{"coin": "BTC", ...}, ...]}."""
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise ValueError("market data payload must be an object with a 'data' list")
    sym = symbol.upper()
    for row in payload["data"]:
        if not isinstance(row, dict):
            continue
        if str(row.get("coin", "")).upper() == sym or str(row.get("symbol", "")).upper() == sym:
            return row
    return None


def parse_on_chain(entry: dict) -> OnChainSignals:
    """
    volume_percentage (share of total market volume) stands in for netflow %.
    """
    volume_pct = _as_float(entry.get("volume_percentage"))
    active = entry.get("active_addresses")
    active = _as_float(active) if active is not None else float(BASELINE_ACTIVE_ADDRESSES)
    change = (active - BASELINE_ACTIVE_ADDRESSES) / BASELINE_ACTIVE_ADDRESSES * 100.0
    return OnChainSignals(
        netflow_percent=volume_pct,
        active_address_change=change,
        volume_percentage=volume_pct,
    )


def parse_ticker(symbol: str, data) -> Ticker:
    """Binance /api/v3/ticker/24hr payload."""
    if not isinstance(data, dict):
        raise ValueError("ticker payload must be an object")
    return Ticker(
        symbol=symbol.upper(),
        price=_as_float(data.get("lastPrice")),
        change_24h=_as_float(data.get("priceChangePercent")),
    )
