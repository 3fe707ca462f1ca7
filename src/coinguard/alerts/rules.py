from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional, Sequence

from coinguard.risk.types import RiskLevel
from coinguard.utils.time import iso_utc, parse_iso_s, seconds_since, utc_now_ms, utc_now_s

Operator = Literal[">", "<", ">=", "<=", "=="]
OPERATORS: tuple[str, ...] = (">", "<", ">=", "<=", "==")

# rules match at most once per rule within this window
COOLDOWN_SECONDS = 60


class ConditionType(str, Enum):
    NEWS_RISK_TAG = "news_risk_tag"
    SOCIAL_NEGATIVE = "social_negative"            # social negative ratio, in %
    ONCHAIN_NETFLOW = "onchain_netflow"
    ONCHAIN_ACTIVE_ADDRESS = "onchain_active_address"
    PRICE_CHANGE = "price_change"
    RISK_SCORE = "risk_score"
    RISK_LEVEL = "risk_level"

    @classmethod
    def parse(cls, value: str) -> "ConditionType":
        key = str(value).strip().lower().replace("-", "_")
        key = _TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown condition type: {value!r}") from None


_TYPE_ALIASES = {
    "social_negative_ratio": "social_negative",
    "on_chain_netflow": "onchain_netflow",
    "on_chain_active_address": "onchain_active_address",
}


def new_id(prefix: str) -> str:
    return f"{prefix}_{utc_now_ms()}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True, slots=True)
class Condition:
    """
    One comparison inside a rule.
      - threshold is a number, or a level name for RISK_LEVEL
      - tag is only read for NEWS_RISK_TAG
    """
    type: ConditionType
    operator: Operator = ">"
    threshold: float | str = 0.0
    tag: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.type, ConditionType):
            object.__setattr__(self, "type", ConditionType.parse(self.type))
        if self.operator not in OPERATORS:
            raise ValueError(f"unsupported operator: {self.operator!r}")
        if self.type is ConditionType.RISK_LEVEL:
            # normalize to the canonical level name; raises on unknown names
            object.__setattr__(self, "threshold", RiskLevel.parse(str(self.threshold)).value)
        elif self.type is not ConditionType.NEWS_RISK_TAG:
            object.__setattr__(self, "threshold", float(self.threshold))

    def to_dict(self) -> dict:
        d = {"type": self.type.value, "operator": self.operator, "value": self.threshold}
        if self.tag is not None:
            d["riskTag"] = self.tag
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Condition":
        return cls(
            type=ConditionType.parse(d["type"]),
            operator=d.get("operator", ">"),
            threshold=d.get("value", d.get("threshold", 0.0)),
            tag=d.get("riskTag", d.get("tag")),
        )


def _normalize_symbols(symbols: Optional[Sequence[str]]) -> Optional[frozenset[str]]:
    if symbols is None:
        return None
    out = frozenset(s.strip().upper() for s in symbols if s and s.strip())
    if not out:
        raise ValueError("explicit symbol scope must not be empty; use None for all assets")
    return out


@dataclass(slots=True)
class WatchRule:
    id: str
    name: str
    conditions: list[Condition] = field(default_factory=list)
    enabled: bool = True
    symbols: Optional[frozenset[str]] = None   # None -> all assets
    created_at: float = field(default_factory=utc_now_s)
    last_triggered: Optional[float] = None

    def __post_init__(self):
        self.symbols = _normalize_symbols(self.symbols)
        self.conditions = list(self.conditions)

    def applies_to(self, symbol: str) -> bool:
        return self.symbols is None or symbol.upper() in self.symbols

    def in_cooldown(self, now: float, window_s: float = COOLDOWN_SECONDS) -> bool:
        return self.last_triggered is not None and seconds_since(self.last_triggered, now) < window_s

    # ---- persistence ----

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "coinSymbols": sorted(self.symbols) if self.symbols is not None else None,
            "conditions": [c.to_dict() for c in self.conditions],
            "createdAt": iso_utc(self.created_at),
            "lastTriggered": iso_utc(self.last_triggered) if self.last_triggered is not None else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "WatchRule":
        symbols = d.get("coinSymbols")
        last = d.get("lastTriggered")
        return cls(
            id=str(d["id"]),
            name=str(d.get("name", "")),
            enabled=bool(d.get("enabled", True)),
            # persisted [] meant "all assets"
            symbols=_normalize_symbols(symbols) if symbols else None,
            conditions=[Condition.from_dict(c) for c in d.get("conditions", [])],
            created_at=parse_iso_s(d["createdAt"]) if d.get("createdAt") else utc_now_s(),
            last_triggered=parse_iso_s(last) if last else None,
        )


@dataclass(slots=True)
class RuleDraft:
    """A rule before the store assigns id and created_at."""
    name: str
    conditions: list[Condition] = field(default_factory=list)
    enabled: bool = True
    symbols: Optional[Sequence[str]] = None

    def build(self, rule_id: str, created_at: float) -> WatchRule:
        return WatchRule(
            id=rule_id,
            name=self.name,
            conditions=list(self.conditions),
            enabled=self.enabled,
            symbols=_normalize_symbols(self.symbols),
            created_at=created_at,
        )
