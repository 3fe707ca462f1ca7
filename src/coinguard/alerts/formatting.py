from __future__ import annotations
from datetime import datetime
from zoneinfo import ZoneInfo

from coinguard.alerts.rules import Condition, ConditionType, WatchRule

def _fmt_ts(ts_s: float, tz_name: str) -> str:
    tz = ZoneInfo(tz_name)
    return datetime.fromtimestamp(ts_s, tz).strftime("%Y-%m-%d %H:%M:%S %Z")

def _num(v) -> str:
    # 5.0 -> "5", 2.5 -> "2.5"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)

def describe_condition(c: Condition) -> str:
    t = c.type
    if t is ConditionType.NEWS_RISK_TAG:
        return f"{c.tag} news detected" if c.tag else ""
    if t is ConditionType.SOCIAL_NEGATIVE:
        return f"social negative {c.operator} {_num(c.threshold)}%"
    if t is ConditionType.ONCHAIN_NETFLOW:
        return f"on-chain netflow {c.operator} {_num(c.threshold)}%"
    if t is ConditionType.ONCHAIN_ACTIVE_ADDRESS:
        return f"active address change {c.operator} {_num(c.threshold)}%"
    if t is ConditionType.PRICE_CHANGE:
        return f"price change {c.operator} {_num(c.threshold)}%"
    if t is ConditionType.RISK_SCORE:
        return f"risk score {c.operator} {_num(c.threshold)}"
    if t is ConditionType.RISK_LEVEL:
        return f"risk level {c.operator} {c.threshold}"
    return ""

def render_message(rule: WatchRule, symbol: str, asset_name: str) -> str:
    """e.g. 'Bitcoin(BTC): price change > 5%, hack news detected'"""
    parts = [d for d in (describe_condition(c) for c in rule.conditions) if d]
    return f"{asset_name}({symbol}): {', '.join(parts)}"

def format_notification_pretty(n, tz_name: str = "UTC") -> str:
    """One-line console/Telegram text for a Notification."""
    when = _fmt_ts(n.triggered_at, tz_name)
    return f"[{n.symbol} WATCH] {when} | {n.rule_name} | {n.message}"
