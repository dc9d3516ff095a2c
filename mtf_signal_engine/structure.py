from __future__ import annotations

import math
from typing import Optional, Sequence

from .config import IndicatorConfig
from .indicators import adx as adx_fn, atr as atr_fn
from .models import AdxReading, Candle, MarketStructure

TRENDING = "TRENDING"
RANGING = "RANGING"
VOLATILE = "VOLATILE"

BULLISH = "BULLISH"
BEARISH = "BEARISH"

STRONG = "STRONG"
WEAK = "WEAK"


def _mean(xs: Sequence[float]) -> float:
    return sum(xs) / len(xs) if xs else 0.0


class MarketStructureClassifier:
    """Regime, bias, strength and volume profile of a candle slice."""

    def __init__(self, config: Optional[IndicatorConfig] = None):
        self.cfg = config if config is not None else IndicatorConfig()

    def classify(
        self,
        candles: Sequence[Candle],
        symbol: str = "",
        timeframe: str = "",
        adx: Optional[AdxReading] = None,
        atr: Optional[float] = None,
    ) -> MarketStructure:
        cfg = self.cfg
        if len(candles) < cfg.structure_min_bars:
            return MarketStructure()

        highs = [c.high for c in candles]
        lows = [c.low for c in candles]
        closes = [c.close for c in candles]
        price = closes[-1]

        if adx is None:
            adx = adx_fn(highs, lows, closes, cfg.adx_period)
        if atr is None:
            atr = atr_fn(highs, lows, closes, cfg.atr_period)

        regime = self._regime(price, adx.adx, atr)
        bias, break_pct = self._bias(highs, lows, adx)
        strength = min(100.0, max(0.0, adx.adx + 10.0 * break_pct))
        volume_profile = self._volume_profile([c.volume for c in candles])
        return MarketStructure(regime=regime, bias=bias, strength=strength, volume_profile=volume_profile)

    def _regime(self, price: float, adx_value: float, atr: float) -> str:
        if price > 0 and math.isfinite(atr) and atr / price * 100.0 > self.cfg.volatile_atr_pct:
            return VOLATILE
        if adx_value > self.cfg.trend_adx:
            return TRENDING
        return RANGING

    def _bias(self, highs: Sequence[float], lows: Sequence[float], adx: AdxReading):
        w = self.cfg.structure_window
        n = len(highs)
        if n < 2 * w:
            w = n // 2
        recent_hi, recent_lo = max(highs[-w:]), min(lows[-w:])
        prior_hi, prior_lo = max(highs[-2 * w:-w]), min(lows[-2 * w:-w])

        vote = 0
        di_spread = adx.plus_di - adx.minus_di
        if di_spread > self.cfg.di_deadband:
            vote += 1
        elif di_spread < -self.cfg.di_deadband:
            vote -= 1

        higher = recent_hi > prior_hi and recent_lo > prior_lo
        lower = recent_hi < prior_hi and recent_lo < prior_lo
        if higher:
            vote += 1
        elif lower:
            vote -= 1

        if vote >= 1:
            brk = (recent_hi - prior_hi) / prior_hi * 100.0 if prior_hi > 0 else 0.0
            return BULLISH, max(0.0, brk)
        if vote <= -1:
            brk = (prior_lo - recent_lo) / prior_lo * 100.0 if prior_lo > 0 else 0.0
            return BEARISH, max(0.0, brk)
        return "NEUTRAL", 0.0

    def _volume_profile(self, volumes: Sequence[float]) -> str:
        recent = _mean(volumes[-self.cfg.structure_volume_recent:])
        base = _mean(volumes[-self.cfg.structure_window:])
        if base <= 0:
            return "NEUTRAL"
        ratio = recent / base
        if ratio > self.cfg.volume_strong_ratio:
            return STRONG
        if ratio < self.cfg.volume_weak_ratio:
            return WEAK
        return "NEUTRAL"
