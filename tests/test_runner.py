import asyncio
import json

from mtf_signal_engine.config import AlertsConfig, Config, ProviderConfig, TelegramConfig, WebhookConfig
from mtf_signal_engine.formatters import format_signal
from mtf_signal_engine.models import LONG, NEUTRAL, SHORT, STAGE_FALLBACK, STAGE_HARMONIZED, Candle, IndicatorSnapshot, Signal
from mtf_signal_engine.notifier.telegram import TelegramNotifier
from mtf_signal_engine.notifier.webhook import signal_payload
from mtf_signal_engine.providers.binance import KlineEvent, candle_from_rest_row, event_from_ws_message
from mtf_signal_engine.runner import SignalRunner


def _cfg(**alerts) -> Config:
    return Config(
        provider=ProviderConfig(symbols=["BTCUSDT"], timeframes=["1h"], warmup_candles=80),
        telegram=TelegramConfig(enabled=False, token="", chat_ids=[]),
        webhook=WebhookConfig(enabled=False),
        alerts=AlertsConfig(**alerts),
    )


def _sig(direction: str, conf: float = 80.0, tf: str = "1h", stage: str = STAGE_HARMONIZED) -> Signal:
    return Signal(
        symbol="BTCUSDT",
        timeframe=tf,
        direction=direction,
        confidence=conf,
        entry_price=100.0,
        stop_loss=98.0,
        take_profit=104.0,
        success_probability=conf * 0.85,
        timestamp=3600,
        indicators=IndicatorSnapshot.neutral(100.0),
        stage=stage,
    )


def test_publishes_only_direction_changes():
    async def _run():
        runner = SignalRunner(_cfg(dedupe=True))
        await runner._handle_signal(_sig(LONG))
        await runner._handle_signal(_sig(LONG, 90.0))
        await runner._handle_signal(_sig(SHORT))
        assert runner.metrics["published_total"] == 2
        assert runner.metrics["suppressed_total"] == 1
        runner.engine.close()

    asyncio.run(_run())


def test_confidence_neutral_and_fallback_filters():
    async def _run():
        runner = SignalRunner(_cfg(min_confidence=60.0, publish_neutral=False))
        await runner._handle_signal(_sig(LONG, 55.0))
        await runner._handle_signal(_sig(NEUTRAL, 80.0))
        await runner._handle_signal(_sig(NEUTRAL, 80.0, stage=STAGE_FALLBACK))
        assert runner.metrics["published_total"] == 0
        assert runner.metrics["suppressed_total"] == 3
        runner.engine.close()

    asyncio.run(_run())


def test_on_event_buffers_and_skips_duplicates():
    async def _run():
        runner = SignalRunner(_cfg())
        closes = [100.0 + i * 0.5 for i in range(70)]
        out = {}
        for i, c in enumerate(closes):
            evt = KlineEvent("BTCUSDT", "1h", Candle(i * 3600, c - 0.5, c + 0.2, c - 0.7, c, 1.0))
            out = await runner.on_event(evt)
        # replay of the last bar
        assert await runner.on_event(evt) == {}
        # timeframe not subscribed
        assert await runner.on_event(KlineEvent("BTCUSDT", "4h", evt.candle)) == {}

        assert runner.metrics["candles_total"] == 70
        assert runner.metrics["duplicates_total"] == 1
        assert runner.metrics["recomputes_total"] == 70
        assert len(runner.engine.series("BTCUSDT", "1h")) == 70
        assert out["1h"].stage == STAGE_HARMONIZED
        assert out["1h"].entry_price == closes[-1]
        runner.engine.close()

    asyncio.run(_run())


def test_buffer_is_capped():
    async def _run():
        runner = SignalRunner(_cfg())
        for i in range(100):
            c = 100.0 + (i % 3)
            await runner.on_event(KlineEvent("BTCUSDT", "1h", Candle(i * 3600, c, c + 1, c - 1, c, 1.0)))
        assert len(runner.engine.series("BTCUSDT", "1h")) == 80
        runner.engine.close()

    asyncio.run(_run())


def test_rest_row_and_ws_parsing():
    row = [1700000000000, "100.0", "101.5", "99.5", "101.0", "12.5", 1700003599999, "0", 10]
    c = candle_from_rest_row(row)
    assert c == Candle(time=1700000000, open=100.0, high=101.5, low=99.5, close=101.0, volume=12.5)

    closed = {"e": "kline", "k": {"s": "btcusdt", "i": "1M", "t": 1700000000000, "o": "1", "h": "2", "l": "0.5", "c": "1.5", "v": "3", "x": True}}
    evt = event_from_ws_message(json.dumps(closed))
    assert evt.symbol == "BTCUSDT"
    assert evt.timeframe == "1M"
    assert evt.candle.time == 1700000000

    closed["k"]["x"] = False
    assert event_from_ws_message(json.dumps(closed)) is None
    assert event_from_ws_message(json.dumps({"result": None, "id": 1})) is None
    assert event_from_ws_message("not json") is None


def test_format_signal_html_and_markdown():
    sig = _sig(LONG)
    html_msg = format_signal(sig, AlertsConfig(parse_mode="HTML"))
    assert "<b>BTCUSDT</b>" in html_msg
    assert "<b>LONG</b>" in html_msg
    assert "Entry: 100" in html_msg

    md_msg = format_signal(sig, AlertsConfig(parse_mode="MarkdownV2", footer="not advice."))
    assert "*BTCUSDT*" in md_msg
    assert "not advice\\." in md_msg


def test_webhook_payload():
    payload = signal_payload(_sig(SHORT), secret="s")
    assert payload["direction"] == SHORT
    assert payload["timeframe"] == "1h"
    assert payload["secret"] == "s"
    assert payload["stop_loss"] == 98.0
    assert "secret" not in signal_payload(_sig(SHORT))


def test_telegram_payload_parse_mode():
    tg = TelegramNotifier("t", ["1"])
    assert tg.enabled()
    assert tg._payload("1", "x", "markdownv2")["parse_mode"] == "MarkdownV2"
    assert tg._payload("1", "x", "html")["parse_mode"] == "HTML"
    assert "parse_mode" not in tg._payload("1", "x", None)
    assert not TelegramNotifier("", ["1"]).enabled()


def test_published_signal_is_tracked_until_target():
    async def _run():
        runner = SignalRunner(_cfg())
        await runner._handle_signal(_sig(LONG))
        await runner._handle_signal(_sig(NEUTRAL, stage=STAGE_FALLBACK))
        assert len(runner.engine.accuracy.predictions("BTCUSDT", open_only=True)) == 1

        await runner.on_event(KlineEvent("BTCUSDT", "1h", Candle(0, 103.5, 105.0, 103.0, 104.5, 1.0)))
        assert runner.metrics["predictions_closed_total"] == 1
        rec = runner.engine.accuracy.get_record("BTCUSDT", "1h")
        assert (rec.correct_count, rec.total_count) == (1, 1)
        runner.engine.close()

    asyncio.run(_run())


class _TimeoutPost:
    async def __aenter__(self):
        raise asyncio.TimeoutError()

    async def __aexit__(self, *exc):
        return False


class _TimeoutSession:
    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def post(self, url, json=None):
        return _TimeoutPost()


def test_telegram_timeout_is_logged_not_raised(monkeypatch):
    monkeypatch.setattr("mtf_signal_engine.notifier.telegram.aiohttp.ClientSession", _TimeoutSession)
    tg = TelegramNotifier("t", ["1", "2"])
    assert asyncio.run(tg.send("hello")) == 0
