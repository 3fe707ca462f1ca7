import asyncio

import pytest

from coinguard.alerts.evaluator import WatchEvaluator
from coinguard.alerts.history import NotificationHistory
from coinguard.alerts.rules import Condition, ConditionType, RuleDraft
from coinguard.alerts.store import WatchRuleStore
from coinguard.ingest.parser import Ticker
from coinguard.pipeline import AssetSpec, RefreshPipeline, assets_from_symbols
from coinguard.risk.summary import Summarizer
from coinguard.risk.types import Available, Unavailable
from coinguard.utils.types import NewsSignals, OnChainSignals, SignalSnapshot, SocialSignals
from storage.kv import MemoryKV


class FakeSource:
    """symbol -> (snapshot, ticker) | Exception | "hang"."""
    def __init__(self, script):
        self.script = script
        self.calls = []

    async def fetch_snapshot(self, symbol):
        self.calls.append(symbol)
        res = self.script[symbol]
        if res == "hang":
            await asyncio.sleep(10)
        if isinstance(res, Exception):
            raise res
        return res


BTC = (
    SignalSnapshot(
        news=NewsSignals(40, 100, risk_tags={"hack"}),
        social=SocialSignals(10, 50),
        on_chain=OnChainSignals(netflow_percent=25, active_address_change=-25),
        price_change_24h=7.2,
    ),
    Ticker("BTC", 64000.0, 7.2),
)


async def _pipeline(script, assets, rules=()):
    store = WatchRuleStore(MemoryKV())
    for draft in rules:
        await store.add(draft)
    history = NotificationHistory(MemoryKV())
    evaluator = WatchEvaluator(store, history)
    p = RefreshPipeline(FakeSource(script), Summarizer(), evaluator, assets, asset_timeout_s=0.05)
    return p, history


@pytest.mark.asyncio
async def test_analyze_asset_scores_and_summarizes():
    p, _ = await _pipeline({"BTC": BTC}, [AssetSpec("BTC", "Bitcoin")])
    state = await p.analyze_asset(AssetSpec("BTC", "Bitcoin"))
    assert isinstance(state.assessment, Available)
    assert state.assessment.score == 58
    assert state.assessment.market_phase == "RISING"
    assert state.assessment.summary
    assert len(state.assessment.summary) <= 100
    assert state.price == 64000.0
    assert state.change_24h == 7.2


@pytest.mark.asyncio
async def test_one_failing_asset_does_not_affect_others():
    script = {
        "BTC": BTC,
        "ETH": RuntimeError("upstream exploded"),
        "SOL": "hang",
        "XRP": (SignalSnapshot(), None),
    }
    specs = assets_from_symbols(["btc", "eth", "sol", "xrp"])
    p, _ = await _pipeline(script, specs)
    batch, _ = await p.refresh()

    assert isinstance(batch["BTC"].assessment, Available)
    assert batch["ETH"].assessment.reason.startswith("fetch failed")
    assert batch["SOL"].assessment.reason == "fetch timed out"
    assert isinstance(batch["XRP"].assessment, Unavailable)
    assert batch["XRP"].assessment.summary == "Not enough news or social data to analyze risk right now"
    assert batch["ETH"].name == "Ethereum"


@pytest.mark.asyncio
async def test_refresh_publishes_batch_then_evaluates_rules():
    pump = RuleDraft(name="pump", conditions=[Condition(ConditionType.PRICE_CHANGE, ">", 5)])
    p, history = await _pipeline({"BTC": BTC}, [AssetSpec("BTC", "Bitcoin")], rules=[pump])
    batch, notes = await p.refresh()
    assert p.latest is batch
    assert p.cycles == 1
    assert [n.symbol for n in notes] == ["BTC"]
    assert len(history) == 1

    # inside the cooldown window the second cycle stays quiet
    _, notes = await p.refresh()
    assert notes == []
    assert p.latest is not batch


@pytest.mark.asyncio
async def test_run_forever_stops_on_event():
    p, _ = await _pipeline({"BTC": BTC}, [AssetSpec("BTC", "Bitcoin")])
    stop = asyncio.Event()

    async def stopper():
        while p.cycles < 2:
            await asyncio.sleep(0.001)
        stop.set()

    await asyncio.wait_for(asyncio.gather(p.run_forever(0.01, stop), stopper()), timeout=2.0)
    assert p.cycles >= 2


def test_assets_from_symbols_names_known_coins():
    specs = assets_from_symbols(["btc", "pepe"])
    assert specs == [AssetSpec("BTC", "Bitcoin"), AssetSpec("PEPE", "PEPE")]
