from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

import aiohttp
import structlog

from coinguard.alerts.history import Notification
from coinguard.notify.queue import NotificationOutbox

log = structlog.get_logger("telegram")

API_BASE = "https://api.telegram.org"


class TokenBucket:
    """Allows `burst` sends at once, then refills at `rate_per_s` tokens per second."""
    def __init__(self, rate_per_s: float, burst: int = 1, clock: Callable[[], float] = time.monotonic):
        if rate_per_s <= 0:
            raise ValueError("rate_per_s must be > 0")
        self.rate_per_s = float(rate_per_s)
        self.burst = max(1, int(burst))
        self._clock = clock
        self._available = float(self.burst)
        self._last = clock()
        self._mutex = asyncio.Lock()

    def _top_up(self) -> None:
        now = self._clock()
        elapsed = now - self._last
        self._last = now
        self._available = min(float(self.burst), self._available + elapsed * self.rate_per_s)

    async def take(self) -> None:
        async with self._mutex:
            self._top_up()
            shortfall = 1.0 - self._available
            if shortfall > 0:
                await asyncio.sleep(shortfall / self.rate_per_s)
                self._top_up()
            self._available = max(0.0, self._available - 1.0)


@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    chat_id: str                      # user, group or channel id
    parse_mode: Optional[str] = None  # "HTML", "MarkdownV2" or plain text
    timeout_s: float = 8.0
    send_rate_per_s: float = 1.0
    send_burst: int = 3
    flood_retries: int = 2            # extra attempts after HTTP 429


def config_from_env() -> TelegramConfig:
    """Raises KeyError when TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID are missing or empty."""
    token = os.environ["TELEGRAM_BOT_TOKEN"].strip()
    chat_id = os.environ["TELEGRAM_CHAT_ID"].strip()
    if not token or not chat_id:
        raise KeyError("TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID empty")
    return TelegramConfig(
        bot_token=token,
        chat_id=chat_id,
        parse_mode=os.getenv("TELEGRAM_PARSE_MODE") or None,
    )


def plain_text(n: Notification) -> str:
    return f"{n.asset_name} ({n.symbol}) | {n.rule_name}\n{n.message}"


class TelegramSink:
    """
    Background delivery of watch notifications to one Telegram chat.

    Notifications arrive through a NotificationOutbox (see QueueNotifier), so the
    evaluator never waits on Telegram. Sends are paced by a token bucket and only
    flood-control replies (429) are retried, after the server's retry_after.
    """
    def __init__(
        self,
        cfg: TelegramConfig,
        outbox: NotificationOutbox,
        render: Optional[Callable[[Notification], str]] = None,
    ):
        self.cfg = cfg
        self.outbox = outbox
        self._render = render or plain_text
        self._bucket = TokenBucket(cfg.send_rate_per_s, burst=cfg.send_burst)
        self._http: Optional[aiohttp.ClientSession] = None
        self._worker: Optional[asyncio.Task] = None
        self.sent = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.cfg.timeout_s))
        self._worker = asyncio.create_task(self._deliver_forever(), name="telegram-sink")
        log.info("telegram_sink_started", chat_id=self.cfg.chat_id)

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log.error("telegram_worker_crashed", err=str(e))
            self._worker = None
        dropped = self.outbox.discard_pending()
        if dropped:
            log.warning("telegram_undelivered_on_stop", count=dropped)
        if self._http is not None:
            await self._http.close()
            self._http = None
        log.info("telegram_sink_stopped", sent=self.sent, failed=self.failed)

    async def _deliver_forever(self) -> None:
        while True:
            n = await self.outbox.take()
            await self._bucket.take()
            try:
                ok = await self.send_message(self._render(n))
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", notification_id=n.id, err=str(e))
                ok = False
            except Exception as e:
                log.error("telegram_delivery_failed", notification_id=n.id, err=str(e))
                ok = False
            if ok:
                self.sent += 1
            else:
                self.failed += 1

    async def send_message(self, text: str) -> bool:
        if self._http is None:
            raise RuntimeError("TelegramSink.start() was not called")
        url = f"{API_BASE}/bot{self.cfg.bot_token}/sendMessage"
        body = {"chat_id": self.cfg.chat_id, "text": text}
        if self.cfg.parse_mode:
            body["parse_mode"] = self.cfg.parse_mode

        attempts = 1 + max(0, self.cfg.flood_retries)
        for attempt in range(1, attempts + 1):
            async with self._http.post(url, data=body) as resp:
                if resp.status == 200:
                    return True
                reason = await _body_or_placeholder(resp)
                if resp.status != 429:
                    log.warning("telegram_rejected", status=resp.status, body=reason)
                    return False
                wait_s = await _flood_wait_s(resp)
            log.warning("telegram_flood_control", attempt=attempt, wait_s=wait_s)
            if attempt < attempts:
                await asyncio.sleep(wait_s)
        log.error("telegram_give_up", attempts=attempts)
        return False


async def _body_or_placeholder(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"


async def _flood_wait_s(resp: aiohttp.ClientResponse, default: float = 1.0) -> float:
    # {"ok": false, "error_code": 429, "parameters": {"retry_after": 7}}
    try:
        data = await resp.json(content_type=None)
        return float(data.get("parameters", {}).get("retry_after") or default)
    except (aiohttp.ClientError, ValueError, TypeError, AttributeError):
        return default
