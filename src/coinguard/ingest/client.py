from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from coinguard.ingest import parser
from coinguard.ingest.parser import Ticker
from coinguard.utils.types import NewsSignals, OnChainSignals, SignalSnapshot, SocialSignals


class SignalUnavailable(Exception):
    """Upstream returned nothing usable for one signal category."""


@dataclass(slots=True)
class SignalClientConfig:
    sentiment_url: str = "http://localhost:3000"
    binance_url: str = "https://api.binance.com"
    quote_asset: str = "USDT"
    window_hours: int = 24
    timeout_s: float = 30.0


class SignalClient:
    """
    Thin read-only client for the sentiment backend and Binance tickers.

    Every fetch either returns shaped data or raises SignalUnavailable; a hung
    request is bounded by cfg.timeout_s. fetch_snapshot() isolates categories so
    a failing source only blanks its own part of the snapshot.

    Usage:
        async with aiohttp.ClientSession() as session:
            client = SignalClient(session, SignalClientConfig(sentiment_url=...))
            snapshot, ticker = await client.fetch_snapshot("BTC")
    """
    def __init__(self, session: aiohttp.ClientSession, cfg: Optional[SignalClientConfig] = None):
        self._session = session
        self.cfg = cfg or SignalClientConfig()
        self._log = structlog.get_logger("signals")

    async def _get_json(self, url: str, params: Optional[dict] = None):
        try:
            async with self._session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.cfg.timeout_s),
            ) as resp:
                if resp.status != 200:
                    raise SignalUnavailable(f"GET {url} -> HTTP {resp.status}")
                return await resp.json(content_type=None)
        except asyncio.TimeoutError:
            raise SignalUnavailable(f"GET {url} timed out after {self.cfg.timeout_s}s") from None
        except aiohttp.ClientError as e:
            raise SignalUnavailable(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise SignalUnavailable(f"GET {url} returned invalid JSON") from e

    async def _sentiment_stats(self, symbol: str, kind: str):
        url = f"{self.cfg.sentiment_url.rstrip('/')}/api/sentiment/stats"
        params = {"type": kind, "hours": self.cfg.window_hours, "coin": symbol.upper()}
        return await self._get_json(url, params)

    async def fetch_news(self, symbol: str) -> NewsSignals:
        data = await self._sentiment_stats(symbol, "news")
        try:
            return parser.parse_news_stats(data)
        except (ValueError, TypeError) as e:
            raise SignalUnavailable(f"news stats malformed: {e}") from e

    async def fetch_social(self, symbol: str) -> SocialSignals:
        data = await self._sentiment_stats(symbol, "social")
        try:
            return parser.parse_social_stats(data)
        except (ValueError, TypeError) as e:
            raise SignalUnavailable(f"social stats malformed: {e}") from e

    async def fetch_on_chain(self, symbol: str) -> OnChainSignals:
        url = f"{self.cfg.sentiment_url.rstrip('/')}/api/market-data"
        data = await self._get_json(url)
        try:
            entry = parser.find_market_entry(data, symbol)
            if entry is None:
                raise SignalUnavailable(f"no market data row for {symbol}")
            return parser.parse_on_chain(entry)
        except (ValueError, TypeError, KeyError) as e:
            raise SignalUnavailable(f"market data malformed: {e}") from e

    async def fetch_ticker(self, symbol: str) -> Ticker:
        url = f"{self.cfg.binance_url.rstrip('/')}/api/v3/ticker/24hr"
        data = await self._get_json(url, {"symbol": f"{symbol.upper()}{self.cfg.quote_asset}"})
        try:
            return parser.parse_ticker(symbol, data)
        except (ValueError, TypeError) as e:
            raise SignalUnavailable(f"ticker malformed: {e}") from e

    async def fetch_snapshot(self, symbol: str) -> tuple[SignalSnapshot, Optional[Ticker]]:
        """
        Fetch all categories concurrently and wait for every one to settle.
        Failed categories come back as None in the snapshot.
        """
        news, social, on_chain, ticker = await asyncio.gather(
            self.fetch_news(symbol),
            self.fetch_social(symbol),
            self.fetch_on_chain(symbol),
            self.fetch_ticker(symbol),
            return_exceptions=True,
        )
        parts = {"news": news, "social": social, "on_chain": on_chain, "ticker": ticker}
        for name, val in parts.items():
            if isinstance(val, SignalUnavailable):
                self._log.warning("signal_unavailable", symbol=symbol, category=name, err=str(val))
            elif isinstance(val, BaseException):
                # anything else is a bug in a fetcher; surface it to the pipeline
                raise val
        ticker = ticker if isinstance(ticker, Ticker) else None
        snapshot = SignalSnapshot(
            news=news if isinstance(news, NewsSignals) else None,
            social=social if isinstance(social, SocialSignals) else None,
            on_chain=on_chain if isinstance(on_chain, OnChainSignals) else None,
            price_change_24h=ticker.change_24h if ticker is not None else None,
        )
        return snapshot, ticker
