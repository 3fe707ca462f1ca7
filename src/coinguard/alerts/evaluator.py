from __future__ import annotations

from typing import Callable, Iterable, Optional

import structlog

from coinguard.alerts.formatting import render_message
from coinguard.alerts.history import Notification, NotificationHistory
from coinguard.alerts.notifiers import Dispatcher
from coinguard.alerts.rules import COOLDOWN_SECONDS, Condition, ConditionType, WatchRule
from coinguard.alerts.store import WatchRuleStore
from coinguard.risk.types import Available, RiskLevel
from coinguard.utils.time import utc_now_s
from coinguard.utils.types import AssetState

log = structlog.get_logger("watch")

EQ_EPSILON = 0.01


# ---------- pure matching ----------

def compare(actual: float, op: str, target: float) -> bool:
    if op == ">":
        return actual > target
    if op == "<":
        return actual < target
    if op == ">=":
        return actual >= target
    if op == "<=":
        return actual <= target
    if op == "==":
        return abs(actual - target) < EQ_EPSILON
    return False


def check_condition(cond: Condition, asset: AssetState) -> bool:
    """Evaluate one condition against the asset's latest state. Missing data -> False."""
    snap = asset.snapshot
    t = cond.type

    if t is ConditionType.PRICE_CHANGE:
        change = asset.change_24h
        if change is None and snap is not None:
            change = snap.price_change_24h
        if change is None:
            return False
        return compare(change, cond.operator, float(cond.threshold))

    if t is ConditionType.RISK_SCORE:
        a = asset.assessment
        if not isinstance(a, Available):
            return False
        return compare(float(a.score), cond.operator, float(cond.threshold))

    if t is ConditionType.RISK_LEVEL:
        a = asset.assessment
        if not isinstance(a, Available):
            return False
        try:
            target = RiskLevel.parse(str(cond.threshold))
        except ValueError:
            return False
        return compare(a.level.ordinal, cond.operator, target.ordinal)

    if snap is None:
        return False

    if t is ConditionType.NEWS_RISK_TAG:
        if not cond.tag or snap.news is None or not snap.news.risk_tags:
            return False
        return cond.tag in snap.news.risk_tags

    if t is ConditionType.SOCIAL_NEGATIVE:
        social = snap.social
        if social is None or social.total_count == 0:
            return False
        return compare(social.negative_pct, cond.operator, float(cond.threshold))

    if t is ConditionType.ONCHAIN_NETFLOW:
        if snap.on_chain is None:
            return False
        return compare(snap.on_chain.netflow_percent, cond.operator, float(cond.threshold))

    if t is ConditionType.ONCHAIN_ACTIVE_ADDRESS:
        if snap.on_chain is None:
            return False
        return compare(snap.on_chain.active_address_change, cond.operator, float(cond.threshold))

    return False


def rule_matches(rule: WatchRule, asset: AssetState) -> bool:
    """
    Enabled, in scope, at least one condition, and every condition holds.
    An empty condition list never matches.
    """
    if not rule.enabled:
        return False
    if not rule.applies_to(asset.symbol):
        return False
    if not rule.conditions:
        return False
    return all(check_condition(c, asset) for c in rule.conditions)


# ---------- evaluator with side effects ----------

class WatchEvaluator:
    """
    Runs once per refresh cycle, after every asset holds a terminal assessment.

    For each enabled rule x in-scope asset that matches:
      - cooldown gate: the rule's last_triggered as of cycle start; inside
        cooldown_s the match is suppressed
      - otherwise: build a Notification, stamp last_triggered in the store,
        append to history, hand to the dispatcher
    """
    def __init__(
        self,
        store: WatchRuleStore,
        history: NotificationHistory,
        dispatcher: Optional[Dispatcher] = None,
        *,
        cooldown_s: float = COOLDOWN_SECONDS,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.store = store
        self.history = history
        self.dispatcher = dispatcher or Dispatcher()
        self.cooldown_s = cooldown_s
        self._clock = clock

    async def evaluate_all(
        self,
        rules: Optional[Iterable[WatchRule]],
        assets: Iterable[AssetState],
        *,
        now: Optional[float] = None,
    ) -> list[Notification]:
        now = self._clock() if now is None else now
        rules = list(self.store.rules if rules is None else rules)
        assets = list(assets)
        out: list[Notification] = []

        for rule in rules:
            if not rule.enabled or not rule.conditions:
                continue
            # the store holds the freshest stamp; rules it does not know carry their own
            stored = self.store.get(rule.id)
            gate = stored if stored is not None else rule
            cooling = gate.in_cooldown(now, self.cooldown_s)
            for asset in assets:
                if not rule_matches(rule, asset):
                    continue
                if cooling:
                    log.debug("watch_suppressed_cooldown", rule_id=rule.id, symbol=asset.symbol)
                    continue
                n = Notification.create(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    symbol=asset.symbol,
                    asset_name=asset.name,
                    message=render_message(rule, asset.symbol, asset.name),
                    triggered_at=now,
                )
                await self._emit(rule, n)
                out.append(n)

        if out:
            log.info("watch_triggered", count=len(out))
        return out

    async def _emit(self, rule: WatchRule, n: Notification) -> None:
        rule.last_triggered = n.triggered_at
        await self.store.update(rule.id, last_triggered=n.triggered_at)
        await self.history.append(n)
        await self.dispatcher.dispatch(n)
