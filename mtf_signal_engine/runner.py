from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from typing import Dict, List, Optional, Tuple

from .config import Config
from .engine import SignalEngine
from .formatters import format_signal
from .models import NEUTRAL, STAGE_FALLBACK, Candle, Signal
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier
from .providers.binance import BinanceProvider, KlineEvent
from .timeframes import parse_timeframe

log = logging.getLogger("runner")


def scoring_signature(cfg: Config) -> str:
    sig = cfg.scoring.signature()
    payload = json.dumps(sig, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class SignalRunner:
    """Feeds closed candles into the engine and publishes direction changes."""

    def __init__(
        self,
        cfg: Config,
        *,
        engine: Optional[SignalEngine] = None,
        provider: Optional[BinanceProvider] = None,
        telegram: Optional[TelegramNotifier] = None,
        webhook: Optional[WebhookNotifier] = None,
    ):
        self.cfg = cfg
        self.symbols = [s.upper() for s in (cfg.provider.symbols or [])]
        self.timeframes = [parse_timeframe(tf) for tf in (cfg.provider.timeframes or [])]

        self.engine = engine if engine is not None else SignalEngine.from_config(cfg)
        self.provider = provider if provider is not None else BinanceProvider(
            market=cfg.provider.market,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            ws_heartbeat_s=cfg.provider.ws_heartbeat_s,
        )
        self.tg = telegram if telegram is not None else TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids or [],
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.webhook = webhook if webhook is not None else WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        )

        self._scoring_sig = scoring_signature(cfg)
        self._buffers: Dict[Tuple[str, str], List[Candle]] = {}
        self._last_time: Dict[Tuple[str, str], int] = {}
        self._published: Dict[Tuple[str, str], str] = {}
        self.metrics = {
            "candles_total": 0,
            "duplicates_total": 0,
            "recomputes_total": 0,
            "published_total": 0,
            "suppressed_total": 0,
            "predictions_closed_total": 0,
        }

    async def warmup(self) -> None:
        n = int(self.cfg.provider.warmup_candles)
        log.info(
            "warmup_start symbols=%d timeframes=%s candles=%d scoring_sig=%s",
            len(self.symbols), self.timeframes, n, self._scoring_sig[:16],
        )
        sem = asyncio.Semaphore(max(1, int(self.cfg.provider.warmup_concurrency)))

        async def _one(sym: str, tf: str):
            try:
                async with sem:
                    candles = await self.provider.fetch_klines(sym, tf, n)
                self._buffers[(sym, tf)] = list(candles)
                if candles:
                    self._last_time[(sym, tf)] = candles[-1].time
                self.engine.update(sym, tf, candles)
                return None
            except Exception as e:
                return (sym, tf, repr(e))

        results = await asyncio.gather(*[_one(sym, tf) for sym in self.symbols for tf in self.timeframes])
        failures = [r for r in results if r is not None]
        if failures:
            for sym, tf, err in failures[:10]:
                log.warning("warmup_failed symbol=%s tf=%s err=%s", sym, tf, err)
            if len(failures) > 10:
                log.warning("warmup_failed_more count=%d", len(failures))
        log.info("warmup_done series=%d", self.engine.stats().series)

        if self.tg.enabled():
            await self.tg.send(
                f"✅ {self.cfg.app.name}: warmup complete. Monitoring {len(self.symbols)} symbols × {len(self.timeframes)} TFs."
            )

    async def run_forever(self) -> None:
        if not self.symbols or not self.timeframes:
            raise ValueError("No symbols/timeframes configured.")

        await self.warmup()

        async for evt in self.provider.stream_klines(self.symbols, self.timeframes):
            await self.on_event(evt)

    def _is_duplicate(self, evt: KlineEvent) -> bool:
        key = (evt.symbol, evt.timeframe)
        last = self._last_time.get(key)
        t = evt.candle.time
        if last is not None and t <= last:
            return True
        self._last_time[key] = t
        return False

    async def on_event(self, evt: KlineEvent) -> Dict[str, Signal]:
        if evt.timeframe not in self.timeframes:
            return {}
        if self._is_duplicate(evt):
            self.metrics["duplicates_total"] += 1
            return {}
        self.metrics["candles_total"] += 1

        key = (evt.symbol, evt.timeframe)
        buf = self._buffers.setdefault(key, [])
        buf.append(evt.candle)
        cap = max(1, int(self.cfg.provider.warmup_candles))
        if len(buf) > cap:
            del buf[: len(buf) - cap]
        self.engine.update(evt.symbol, evt.timeframe, buf)
        closed = self.engine.check_predictions(evt.symbol, evt.candle.close)
        self.metrics["predictions_closed_total"] += len(closed)

        loop = asyncio.get_running_loop()
        signals = await loop.run_in_executor(None, self.engine.compute_all, evt.symbol, evt.candle.close)
        self.metrics["recomputes_total"] += 1

        for tf in self.timeframes:
            sig = signals.get(tf)
            if sig is not None:
                await self._handle_signal(sig)
        return signals

    def _should_publish(self, sig: Signal) -> bool:
        alerts = self.cfg.alerts
        if sig.stage == STAGE_FALLBACK:
            return False
        if sig.direction == NEUTRAL and not alerts.publish_neutral:
            return False
        if sig.confidence < alerts.min_confidence:
            return False
        if alerts.dedupe and self._published.get((sig.symbol, sig.timeframe)) == sig.direction:
            return False
        return True

    async def _handle_signal(self, sig: Signal) -> None:
        key = (sig.symbol, sig.timeframe)
        if not self._should_publish(sig):
            self.metrics["suppressed_total"] += 1
            return
        self._published[key] = sig.direction
        self.metrics["published_total"] += 1
        self.engine.record_prediction(sig)

        log.info(
            "signal %s %s %s conf=%.1f success=%.1f entry=%s sl=%s tp=%s bar=%s published_total=%d suppressed_total=%d",
            sig.symbol,
            sig.timeframe,
            sig.direction,
            sig.confidence,
            sig.success_probability,
            sig.entry_price,
            sig.stop_loss,
            sig.take_profit,
            sig.timestamp,
            self.metrics["published_total"],
            self.metrics["suppressed_total"],
        )

        if self.webhook.enabled:
            try:
                await self.webhook.send_signal(sig)
            except Exception as e:
                log.warning("webhook_send_failed symbol=%s tf=%s err=%s", sig.symbol, sig.timeframe, e)

        if not self.tg.enabled():
            return

        parse_mode = self.cfg.alerts.parse_mode or "HTML"
        try:
            await self.tg.send(format_signal(sig, self.cfg.alerts), parse_mode=parse_mode)
        except Exception as e:
            log.warning("telegram_send_failed symbol=%s tf=%s err=%s", sig.symbol, sig.timeframe, e)

    async def close(self) -> None:
        await self.provider.close()
        self.engine.close()
