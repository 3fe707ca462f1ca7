from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Optional, Protocol

import structlog

from coinguard.alerts.evaluator import WatchEvaluator
from coinguard.alerts.history import Notification
from coinguard.ingest.parser import Ticker
from coinguard.risk import scoring
from coinguard.risk.summary import Summarizer
from coinguard.risk.types import Available, Unavailable, assessment_to_dict
from coinguard.utils.time import utc_now_s
from coinguard.utils.types import AssetState, SignalSnapshot

log = structlog.get_logger("pipeline")


class SnapshotSource(Protocol):
    async def fetch_snapshot(self, symbol: str) -> tuple[SignalSnapshot, Optional[Ticker]]: ...


@dataclass(frozen=True, slots=True)
class AssetSpec:
    symbol: str
    name: str


DEFAULT_ASSETS: tuple[AssetSpec, ...] = (
    AssetSpec("BTC", "Bitcoin"),
    AssetSpec("ETH", "Ethereum"),
    AssetSpec("SOL", "Solana"),
    AssetSpec("BNB", "BNB"),
    AssetSpec("XRP", "XRP"),
    AssetSpec("ADA", "Cardano"),
    AssetSpec("AVAX", "Avalanche"),
    AssetSpec("DOGE", "Dogecoin"),
    AssetSpec("DOT", "Polkadot"),
    AssetSpec("LINK", "Chainlink"),
)
_KNOWN_NAMES = {a.symbol: a.name for a in DEFAULT_ASSETS}


def assets_from_symbols(symbols: list[str]) -> list[AssetSpec]:
    return [AssetSpec(s.upper(), _KNOWN_NAMES.get(s.upper(), s.upper())) for s in symbols]


class RefreshPipeline:
    """
    One refresh cycle:
      1) analyze every asset concurrently (fetch -> score -> summarize); each asset
         is isolated, a failure or timeout yields Unavailable for that asset only
      2) wait for the whole batch
      3) run the watch evaluator over the complete batch
    Each cycle publishes a fresh `latest` map; nothing is mutated in place.
    """
    def __init__(
        self,
        source: SnapshotSource,
        summarizer: Summarizer,
        evaluator: WatchEvaluator,
        assets: list[AssetSpec] | tuple[AssetSpec, ...] = DEFAULT_ASSETS,
        *,
        asset_timeout_s: float = 30.0,
    ):
        self.source = source
        self.summarizer = summarizer
        self.evaluator = evaluator
        self.assets = list(assets)
        self.asset_timeout_s = asset_timeout_s
        self.latest: dict[str, AssetState] = {}
        self.cycles = 0

    async def analyze_asset(self, spec: AssetSpec) -> AssetState:
        """Never raises; a failed asset comes back with an Unavailable assessment."""
        try:
            snapshot, ticker = await asyncio.wait_for(
                self.source.fetch_snapshot(spec.symbol), timeout=self.asset_timeout_s
            )
        except asyncio.TimeoutError:
            log.warning("asset_fetch_timeout", symbol=spec.symbol, timeout_s=self.asset_timeout_s)
            return AssetState(spec.symbol, spec.name, assessment=Unavailable(reason="fetch timed out"))
        except Exception as e:
            log.warning("asset_fetch_failed", symbol=spec.symbol, err=str(e))
            return AssetState(spec.symbol, spec.name, assessment=Unavailable(reason=f"fetch failed: {e}"))

        assessment = scoring.score(snapshot)
        summary = await self.summarizer.summarize(snapshot, assessment, symbol=spec.symbol, name=spec.name)
        assessment = replace(assessment, summary=summary)

        if isinstance(assessment, Available):
            log.info("asset_scored", symbol=spec.symbol, **assessment_to_dict(assessment))
        else:
            log.warning("asset_unavailable", symbol=spec.symbol, **assessment_to_dict(assessment))

        return AssetState(
            symbol=spec.symbol,
            name=spec.name,
            price=ticker.price if ticker is not None else None,
            change_24h=ticker.change_24h if ticker is not None else None,
            snapshot=snapshot,
            assessment=assessment,
        )

    async def refresh(self) -> tuple[dict[str, AssetState], list[Notification]]:
        started = utc_now_s()
        states = await asyncio.gather(*(self.analyze_asset(a) for a in self.assets))
        batch = {s.symbol: s for s in states}
        self.latest = batch
        self.cycles += 1

        notifications = await self.evaluator.evaluate_all(None, batch.values())
        log.info(
            "refresh_done",
            cycle=self.cycles,
            assets=len(batch),
            unavailable=sum(1 for s in states if not s.assessment.available),
            notifications=len(notifications),
            elapsed_s=round(utc_now_s() - started, 3),
        )
        return batch, notifications

    async def run_forever(self, interval_s: float, stop: Optional[asyncio.Event] = None) -> None:
        """Run refresh() every interval_s until `stop` is set. Cycles never overlap."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            started = utc_now_s()
            try:
                await self.refresh()
            except Exception as e:
                log.error("refresh_failed", err=str(e))
            wait_s = max(0.0, interval_s - (utc_now_s() - started))
            try:
                await asyncio.wait_for(stop.wait(), timeout=wait_s)
            except asyncio.TimeoutError:
                pass
