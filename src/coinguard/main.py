# src/coinguard/main.py
import asyncio
import logging
import signal

import aiohttp
import structlog
from dotenv import load_dotenv

from coinguard.config import Settings, settings_from_env

from coinguard.ingest.client import SignalClient, SignalClientConfig
from coinguard.pipeline import RefreshPipeline, assets_from_symbols

from coinguard.risk.summary import OpenAISummarizer, Summarizer

# Watch rules / notifications
from coinguard.alerts.store import WatchRuleStore
from coinguard.alerts.history import NotificationHistory
from coinguard.alerts.evaluator import WatchEvaluator
from coinguard.alerts.notifiers import ConsoleNotifier, Dispatcher, QueueNotifier
from coinguard.alerts.formatting import format_notification_pretty

# Telegram notifier (optional)
from coinguard.notify.queue import NotificationOutbox
from coinguard.notify.telegram import TelegramSink, config_from_env

# Storage port
from storage.kv import MemoryKV, RedisKV

log = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        cache_logger_on_first_use=True,
    )


def build_storage(settings: Settings):
    if settings.redis_url:
        log.info("storage_redis", url=settings.redis_url)
        return RedisKV.from_url(settings.redis_url)
    log.info("storage_memory")
    return MemoryKV()


# ---------------------------
# Main
# ---------------------------

async def main(settings: Settings | None = None):
    settings = settings or settings_from_env()

    kv = build_storage(settings)
    store = WatchRuleStore(kv)
    history = NotificationHistory(kv)
    await store.load()
    await history.load()

    # ----- Notifications -----
    fmt = lambda n: format_notification_pretty(n, settings.display_tz)
    dispatcher = Dispatcher([ConsoleNotifier(format_fn=fmt)])

    # Optional Telegram (built from env). If not configured, we skip it.
    telegram = None
    try:
        tg_cfg = config_from_env()  # raises if env missing
        outbox = NotificationOutbox(maxsize=500)
        telegram = TelegramSink(tg_cfg, outbox, render=fmt)
        dispatcher.add(QueueNotifier(outbox))
        log.info("telegram_enabled")
    except KeyError:
        log.info("telegram_disabled_missing_env")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass  # e.g. Windows

    async with aiohttp.ClientSession() as session:
        client = SignalClient(
            session,
            SignalClientConfig(
                sentiment_url=settings.sentiment_api_url,
                binance_url=settings.binance_api_url,
                timeout_s=settings.fetch_timeout_s,
            ),
        )

        strategies = []
        if settings.openai_api_key:
            strategies.append(OpenAISummarizer(
                session,
                settings.openai_api_key,
                model=settings.openai_model,
                timeout_s=settings.summary_timeout_s,
            ))
            log.info("openai_summaries_enabled", model=settings.openai_model)

        pipeline = RefreshPipeline(
            source=client,
            summarizer=Summarizer(strategies),
            evaluator=WatchEvaluator(store, history, dispatcher),
            assets=assets_from_symbols(settings.symbols),
            asset_timeout_s=settings.fetch_timeout_s,
        )

        if telegram is not None:
            await telegram.start()
        log.info("coinguard_started", symbols=settings.symbols, interval_s=settings.refresh_interval_s,
                 rules=len(store.rules))
        try:
            await pipeline.run_forever(settings.refresh_interval_s, stop)
        finally:
            # graceful shutdown to avoid unclosed sessions
            if telegram is not None:
                await telegram.stop()
            if isinstance(kv, RedisKV):
                await kv.close()


def run() -> None:
    load_dotenv()
    settings = settings_from_env()
    configure_logging(settings.log_level)
    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
