import json

import pytest

from coinguard.alerts.rules import Condition, ConditionType, RuleDraft
from coinguard.alerts.store import WatchRuleStore
from storage.kv import RULES_KEY, MemoryKV
from tests.helpers.fake_kv import FailingKV


def _draft(name="BTC pump", symbols=("BTC",)):
    return RuleDraft(
        name=name,
        conditions=[Condition(ConditionType.PRICE_CHANGE, ">", 5)],
        symbols=list(symbols) if symbols is not None else None,
    )


@pytest.mark.asyncio
async def test_add_persists_and_reloads():
    kv = MemoryKV()
    store = WatchRuleStore(kv)
    rule = await store.add(_draft())
    assert rule.id.startswith("watch_")

    raw = json.loads(await kv.get(RULES_KEY))
    assert raw[0]["name"] == "BTC pump"
    assert raw[0]["coinSymbols"] == ["BTC"]

    fresh = WatchRuleStore(kv)
    loaded = await fresh.load()
    assert [r.id for r in loaded] == [rule.id]
    assert loaded[0].conditions == rule.conditions


@pytest.mark.asyncio
async def test_update_merges_fields():
    store = WatchRuleStore(MemoryKV())
    rule = await store.add(_draft())
    updated = await store.update(rule.id, enabled=False, symbols=["eth", "sol"])
    assert updated.enabled is False
    assert updated.symbols == frozenset({"ETH", "SOL"})
    assert store.get(rule.id).enabled is False


@pytest.mark.asyncio
async def test_update_unknown_id_returns_none():
    store = WatchRuleStore(MemoryKV())
    assert await store.update("watch_missing", enabled=False) is None


@pytest.mark.asyncio
async def test_update_rejects_immutable_fields():
    store = WatchRuleStore(MemoryKV())
    rule = await store.add(_draft())
    with pytest.raises(TypeError):
        await store.update(rule.id, id="other")
    with pytest.raises(TypeError):
        await store.update(rule.id, colour="red")


@pytest.mark.asyncio
async def test_invalid_update_leaves_rule_untouched():
    store = WatchRuleStore(MemoryKV())
    rule = await store.add(_draft())
    with pytest.raises(ValueError):
        await store.update(rule.id, symbols=[])
    assert store.get(rule.id).symbols == frozenset({"BTC"})


@pytest.mark.asyncio
async def test_delete():
    store = WatchRuleStore(MemoryKV())
    a = await store.add(_draft("a"))
    b = await store.add(_draft("b"))
    assert await store.delete(a.id) is True
    assert await store.delete(a.id) is False
    assert [r.id for r in store.rules] == [b.id]


@pytest.mark.asyncio
async def test_rules_returns_a_copy():
    store = WatchRuleStore(MemoryKV())
    await store.add(_draft())
    store.rules.clear()
    assert len(store.rules) == 1


@pytest.mark.asyncio
async def test_corrupt_payload_loads_empty():
    store = WatchRuleStore(MemoryKV({RULES_KEY: "{not json"}))
    assert await store.load() == []


@pytest.mark.asyncio
async def test_non_list_payload_loads_empty():
    store = WatchRuleStore(MemoryKV({RULES_KEY: json.dumps({"id": "x"})}))
    assert await store.load() == []


@pytest.mark.asyncio
async def test_invalid_entries_are_skipped():
    good = {"id": "watch_1", "name": "ok", "conditions": [{"type": "risk_score", "operator": ">", "value": 70}]}
    bad = {"name": "no id"}
    worse = {"id": "watch_2", "conditions": [{"type": "moon", "operator": ">", "value": 1}]}
    store = WatchRuleStore(MemoryKV({RULES_KEY: json.dumps([good, bad, worse])}))
    loaded = await store.load()
    assert [r.id for r in loaded] == ["watch_1"]


@pytest.mark.asyncio
async def test_failed_write_keeps_memory_state():
    kv = FailingKV()
    store = WatchRuleStore(kv)
    rule = await store.add(_draft())
    assert kv.set_attempts == 1
    assert store.get(rule.id) is not None


@pytest.mark.asyncio
async def test_failed_read_loads_empty():
    store = WatchRuleStore(FailingKV(fail_get=True))
    assert await store.load() == []
