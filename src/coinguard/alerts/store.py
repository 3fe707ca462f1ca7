from __future__ import annotations

from dataclasses import fields, replace
from typing import Optional

import structlog

from coinguard.alerts.rules import RuleDraft, WatchRule, new_id
from coinguard.utils.time import utc_now_s
from storage.kv import RULES_KEY, KeyValueStore, load_json, save_json

log = structlog.get_logger("rule_store")

_UPDATABLE = {f.name for f in fields(WatchRule)} - {"id", "created_at"}


class WatchRuleStore:
    """
    Watch rules keyed by id, persisted as one JSON list under RULES_KEY.

    The in-memory list is authoritative for the process: load() replaces it from
    storage, every mutation writes the full list back. A failed write is logged and
    the in-memory state is kept. Single-process, last writer wins.
    """
    def __init__(self, kv: KeyValueStore, key: str = RULES_KEY):
        self._kv = kv
        self._key = key
        self._rules: list[WatchRule] = []

    @property
    def rules(self) -> list[WatchRule]:
        return list(self._rules)

    def get(self, rule_id: str) -> Optional[WatchRule]:
        for r in self._rules:
            if r.id == rule_id:
                return r
        return None

    async def load(self) -> list[WatchRule]:
        raw = await load_json(self._kv, self._key, default=[])
        if not isinstance(raw, list):
            log.warning("rules_payload_not_list", key=self._key)
            raw = []
        out: list[WatchRule] = []
        for item in raw:
            try:
                out.append(WatchRule.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("rule_skipped_invalid", err=str(e))
        self._rules = out
        log.info("rules_loaded", count=len(out))
        return self.rules

    async def add(self, draft: RuleDraft) -> WatchRule:
        rule = draft.build(new_id("watch"), utc_now_s())
        self._rules.append(rule)
        await self._save()
        log.info("rule_added", rule_id=rule.id, name=rule.name)
        return rule

    async def update(self, rule_id: str, **changes) -> Optional[WatchRule]:
        """Merge `changes` into the rule. Unknown id is a no-op (returns None)."""
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise TypeError(f"cannot update field(s): {', '.join(sorted(unknown))}")
        for i, rule in enumerate(self._rules):
            if rule.id == rule_id:
                # replace() re-runs __post_init__ validation
                updated = replace(rule, **changes)
                self._rules[i] = updated
                await self._save()
                return updated
        return None

    async def delete(self, rule_id: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.id != rule_id]
        if len(self._rules) == before:
            return False
        await self._save()
        log.info("rule_deleted", rule_id=rule_id)
        return True

    async def _save(self) -> None:
        if not await save_json(self._kv, self._key, [r.to_dict() for r in self._rules]):
            log.warning("rules_kept_in_memory", count=len(self._rules))
