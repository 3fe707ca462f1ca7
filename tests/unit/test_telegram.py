import asyncio

import pytest

import coinguard.notify.telegram as tg
from coinguard.alerts.history import Notification
from coinguard.notify.queue import NotificationOutbox
from tests.helpers.fake_http import FakeResponse, FakeSession


class _Clock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def _note(i=1):
    return Notification(id=f"notif_{i}", rule_id="w", rule_name="pump", symbol="BTC",
                        asset_name="Bitcoin", message="price change > 5%", triggered_at=0.0)


@pytest.mark.asyncio
async def test_token_bucket_burst_then_waits(monkeypatch):
    clock = _Clock()
    slept = []

    async def fake_sleep(s):
        slept.append(s)
        clock.t += s

    monkeypatch.setattr(tg.asyncio, "sleep", fake_sleep)
    bucket = tg.TokenBucket(rate_per_s=2.0, burst=2, clock=clock)
    await bucket.take()
    await bucket.take()
    assert slept == []
    await bucket.take()
    assert slept == [pytest.approx(0.5)]


@pytest.mark.asyncio
async def test_token_bucket_refills_over_time(monkeypatch):
    clock = _Clock()
    slept = []

    async def fake_sleep(s):
        slept.append(s)

    monkeypatch.setattr(tg.asyncio, "sleep", fake_sleep)
    bucket = tg.TokenBucket(rate_per_s=1.0, burst=1, clock=clock)
    await bucket.take()
    clock.t = 5.0
    await bucket.take()
    assert slept == []


def test_token_bucket_rejects_zero_rate():
    with pytest.raises(ValueError):
        tg.TokenBucket(rate_per_s=0)


def test_config_from_env(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")
    with pytest.raises(KeyError):
        tg.config_from_env()

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "   ")
    with pytest.raises(KeyError):
        tg.config_from_env()

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_PARSE_MODE", "HTML")
    cfg = tg.config_from_env()
    assert cfg.chat_id == "42"
    assert cfg.parse_mode == "HTML"


def _sink(handler, **cfg_kw):
    cfg = tg.TelegramConfig(bot_token="123:abc", chat_id="42", **cfg_kw)
    sink = tg.TelegramSink(cfg, NotificationOutbox())
    sink._http = FakeSession(handler)
    return sink


@pytest.mark.asyncio
async def test_send_message_waits_out_flood_control(monkeypatch):
    slept = []

    async def fake_sleep(s):
        slept.append(s)

    monkeypatch.setattr(tg.asyncio, "sleep", fake_sleep)
    replies = [
        FakeResponse(429, {"ok": False, "parameters": {"retry_after": 3}}),
        FakeResponse(200, {"ok": True}),
    ]
    sink = _sink(lambda m, u, p: replies.pop(0))
    assert await sink.send_message("hello") is True
    assert slept == [3.0]
    call = sink._http.calls[0]
    assert call["url"] == "https://api.telegram.org/bot123:abc/sendMessage"
    assert call["data"] == {"chat_id": "42", "text": "hello"}


@pytest.mark.asyncio
async def test_send_message_does_not_retry_other_errors():
    sink = _sink(lambda m, u, p: FakeResponse(400, {"ok": False, "description": "chat not found"}))
    assert await sink.send_message("hello") is False
    assert len(sink._http.calls) == 1


@pytest.mark.asyncio
async def test_send_message_gives_up_after_flood_retries(monkeypatch):
    slept = []

    async def fake_sleep(s):
        slept.append(s)

    monkeypatch.setattr(tg.asyncio, "sleep", fake_sleep)
    sink = _sink(lambda m, u, p: FakeResponse(429, {"parameters": {}}), flood_retries=2)
    assert await sink.send_message("hello") is False
    assert len(sink._http.calls) == 3
    assert slept == [1.0, 1.0]


@pytest.mark.asyncio
async def test_send_message_requires_start():
    sink = tg.TelegramSink(tg.TelegramConfig(bot_token="t", chat_id="c"), NotificationOutbox())
    with pytest.raises(RuntimeError):
        await sink.send_message("hello")


@pytest.mark.asyncio
async def test_worker_drains_outbox():
    outbox = NotificationOutbox()
    cfg = tg.TelegramConfig(bot_token="t", chat_id="c", send_rate_per_s=100.0, send_burst=10)
    sink = tg.TelegramSink(cfg, outbox, render=lambda n: f"{n.symbol}: {n.message}")
    http = FakeSession(lambda m, u, p: FakeResponse(200, {"ok": True}))
    sink._http = http
    sink._worker = asyncio.create_task(sink._deliver_forever())
    assert sink.running

    outbox.offer(_note())
    for _ in range(100):
        if sink.sent:
            break
        await asyncio.sleep(0.01)

    await sink.stop()
    assert http.calls[0]["data"]["text"] == "BTC: price change > 5%"
    assert sink.sent == 1
    assert http.closed is True
    assert not sink.running


@pytest.mark.asyncio
async def test_stop_discards_undelivered():
    outbox = NotificationOutbox()
    outbox.offer(_note(1))
    outbox.offer(_note(2))
    sink = tg.TelegramSink(tg.TelegramConfig(bot_token="t", chat_id="c"), outbox)
    await sink.stop()
    assert outbox.pending == 0


def test_plain_text():
    assert tg.plain_text(_note()) == "Bitcoin (BTC) | pump\nprice change > 5%"


@pytest.mark.asyncio
async def test_render_failure_does_not_kill_worker():
    outbox = NotificationOutbox()
    cfg = tg.TelegramConfig(bot_token="t", chat_id="c", send_rate_per_s=100.0, send_burst=10)

    def render(n):
        if n.id == "notif_1":
            raise ValueError("bad tz")
        return n.message

    sink = tg.TelegramSink(cfg, outbox, render=render)
    http = FakeSession(lambda m, u, p: FakeResponse(200, {"ok": True}))
    sink._http = http
    sink._worker = asyncio.create_task(sink._deliver_forever())

    outbox.offer(_note(1))
    outbox.offer(_note(2))
    for _ in range(100):
        if sink.sent:
            break
        await asyncio.sleep(0.01)

    assert sink.running
    assert sink.failed == 1
    assert sink.sent == 1
    assert outbox.pending == 0
    await sink.stop()
    assert http.closed is True


@pytest.mark.asyncio
async def test_stop_survives_a_crashed_worker():
    sink = tg.TelegramSink(tg.TelegramConfig(bot_token="t", chat_id="c"), NotificationOutbox())
    http = FakeSession(lambda m, u, p: FakeResponse(200, {"ok": True}))
    sink._http = http

    async def crash():
        raise ValueError("boom")

    sink._worker = asyncio.create_task(crash())
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert not sink.running

    await sink.stop()
    assert http.closed is True
    assert sink._worker is None
