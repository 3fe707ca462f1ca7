# src/coinguard/alerts/notifiers.py
from __future__ import annotations
import inspect
import structlog
from typing import Callable, Optional, Protocol, Sequence

from coinguard.alerts.history import Notification

log = structlog.get_logger("notifier")


class NotificationSink(Protocol):
    async def send(self, n: Notification) -> None: ...


class ConsoleNotifier:
    def __init__(self, format_fn: Optional[Callable[[Notification], str]] = None):
        self._format_fn = format_fn

    async def send(self, n: Notification):
        if self._format_fn:
            try:
                text = self._format_fn(n)
                print(text, flush=True)
                return
            except Exception as e:
                log.warning("console_format_failed", err=str(e))
        # fallback (raw)
        print(f"[WATCH] {n.symbol} {n.rule_name} msg={n.message}", flush=True)


class CallbackNotifier:
    """In-app sink: hands each notification to a UI callback (sync or async)."""
    def __init__(self, callback: Callable[[Notification], object]):
        self._callback = callback

    async def send(self, n: Notification):
        res = self._callback(n)
        if inspect.isawaitable(res):
            await res


class QueueNotifier:
    """Non-blocking hand-off to a background sink (e.g. Telegram) through a NotificationOutbox."""
    def __init__(self, outbox):
        self._outbox = outbox

    async def send(self, n: Notification):
        if not self._outbox.offer(n):
            log.warning("outbox_full_dropped", notification_id=n.id)


class Dispatcher:
    """Fans a notification out to every sink; one failing sink never blocks the others."""
    def __init__(self, sinks: Sequence[NotificationSink] = ()):
        self.sinks: list[NotificationSink] = list(sinks)

    def add(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    async def dispatch(self, n: Notification) -> int:
        delivered = 0
        for sink in self.sinks:
            try:
                await sink.send(n)
                delivered += 1
            except Exception as e:
                log.warning("sink_failed", sink=type(sink).__name__, notification_id=n.id, err=str(e))
        return delivered
