from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

from .accuracy import AccuracyFeedbackStore
from .cache import IndicatorCache, series_id
from .config import IndicatorConfig, ScoringConfig
from .errors import InsufficientDataError
from .indicators import adx, atr, bollinger, ema, macd, rsi_wilder, stochastic, support_resistance
from .models import (
    LONG,
    NEUTRAL,
    SHORT,
    STAGE_FALLBACK,
    STAGE_SCORED,
    Candle,
    EmaReading,
    IndicatorSnapshot,
    MarketStructure,
    Signal,
)
from .risk import RiskCalculator
from .structure import BEARISH, BULLISH, STRONG, TRENDING, VOLATILE, WEAK, MarketStructureClassifier
from .timeframes import LONG_HORIZON, TIMEFRAME_SPECS

log = logging.getLogger("scoring")


def clamp(x: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, x))


def success_probability(confidence: float, timeframe: str, direction: str, cfg: Optional[ScoringConfig] = None) -> float:
    cfg = cfg if cfg is not None else ScoringConfig()
    p = confidence * cfg.success_factor
    if direction == LONG and timeframe in LONG_HORIZON:
        p += cfg.success_long_bonus
    return clamp(p, cfg.success_floor, cfg.success_ceiling)


class _Tally:
    """Running bullish/bearish/confidence totals with a readable trail."""

    def __init__(self, confidence: float):
        self.bullish = 0
        self.bearish = 0
        self.confidence = confidence
        self.lines: List[str] = []

    def bull(self, label: str, points: int, conf: float = 0) -> None:
        self.bullish += points
        self.confidence += conf
        self.lines.append(f"{label} (bull +{points}, conf {conf:+g})")

    def bear(self, label: str, points: int, conf: float = 0) -> None:
        self.bearish += points
        self.confidence += conf
        self.lines.append(f"{label} (bear +{points}, conf {conf:+g})")

    def conf(self, label: str, conf: float) -> None:
        self.confidence += conf
        self.lines.append(f"{label} (conf {conf:+g})")


class ScoringEngine:
    """Turns one candle series into an un-harmonized Signal."""

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        indicator_config: Optional[IndicatorConfig] = None,
        accuracy: Optional[AccuracyFeedbackStore] = None,
        cache: Optional[IndicatorCache] = None,
        classifier: Optional[MarketStructureClassifier] = None,
        risk: Optional[RiskCalculator] = None,
    ):
        self.cfg = config if config is not None else ScoringConfig()
        self.ind = indicator_config if indicator_config is not None else IndicatorConfig()
        self.accuracy = accuracy if accuracy is not None else AccuracyFeedbackStore()
        self.cache = cache if cache is not None else IndicatorCache()
        self.classifier = classifier if classifier is not None else MarketStructureClassifier(self.ind)
        self.risk = risk if risk is not None else RiskCalculator()

    # ------------------------------------------------------------------
    # Indicators

    def snapshot(self, symbol: str, timeframe: str, candles: Sequence[Candle], price: float) -> Tuple[IndicatorSnapshot, MarketStructure]:
        ind = self.ind
        sid = series_id(symbol, timeframe, candles)
        get = self.cache.get_or_compute

        highs = [c.high for c in candles]
        lows = [c.low for c in candles]
        closes = [c.close for c in candles]
        volumes = [c.volume for c in candles]

        rsi_v = get(sid, "rsi", (ind.rsi_period,), lambda: rsi_wilder(closes, ind.rsi_period))
        macd_v = get(sid, "macd", (ind.macd_fast, ind.macd_slow, ind.macd_signal),
                     lambda: macd(closes, ind.macd_fast, ind.macd_slow, ind.macd_signal))
        ema_v = get(sid, "ema", (ind.ema_short, ind.ema_medium, ind.ema_long),
                    lambda: EmaReading(
                        short=ema(closes, ind.ema_short),
                        medium=ema(closes, ind.ema_medium),
                        long=ema(closes, ind.ema_long),
                    ))
        stoch_v = get(sid, "stochastic", (ind.stoch_k, ind.stoch_d),
                      lambda: stochastic(highs, lows, closes, ind.stoch_k, ind.stoch_d))
        bb_v = get(sid, "bollinger", (ind.bb_period, ind.bb_mult), lambda: bollinger(closes, ind.bb_period, ind.bb_mult))
        adx_v = get(sid, "adx", (ind.adx_period,), lambda: adx(highs, lows, closes, ind.adx_period))
        atr_v = get(sid, "atr", (ind.atr_period,), lambda: atr(highs, lows, closes, ind.atr_period))
        # levels are split around the caller's price, so it is part of the key
        sr = get(
            sid,
            "support_resistance",
            (price, ind.sr_sensitivity, ind.sr_tolerance_pct, ind.sr_volume_factor, ind.sr_volume_window, ind.sr_lookback, ind.sr_max_levels),
            lambda: support_resistance(
                highs,
                lows,
                volumes,
                price,
                sensitivity=ind.sr_sensitivity,
                tolerance_pct=ind.sr_tolerance_pct,
                volume_factor=ind.sr_volume_factor,
                volume_window=ind.sr_volume_window,
                lookback=ind.sr_lookback,
                max_levels=ind.sr_max_levels,
            ),
        )
        structure = get(sid, "structure", (ind.adx_period, ind.atr_period, ind.structure_window),
                        lambda: self.classifier.classify(candles, symbol, timeframe, adx=adx_v, atr=atr_v))

        snap = IndicatorSnapshot(
            rsi=rsi_v,
            macd=macd_v,
            ema=ema_v,
            stochastic=stoch_v,
            bollinger=bb_v,
            adx=adx_v,
            atr=atr_v,
            supports=sr.supports,
            resistances=sr.resistances,
        )
        return snap, structure

    # ------------------------------------------------------------------
    # Signals

    def neutral_signal(self, symbol: str, timeframe: str, price: float, timestamp: int = 0) -> Signal:
        """Recovered signal for a series too short to score."""
        stop, target = self.risk.neutral_levels(price)
        conf = self.cfg.confidence_base
        return Signal(
            symbol=symbol,
            timeframe=timeframe,
            direction=NEUTRAL,
            confidence=conf,
            entry_price=price,
            stop_loss=stop,
            take_profit=target,
            success_probability=success_probability(conf, timeframe, NEUTRAL, self.cfg),
            timestamp=timestamp,
            indicators=IndicatorSnapshot.neutral(price),
            stage=STAGE_FALLBACK,
        )

    def score(self, symbol: str, timeframe: str, candles: Sequence[Candle], price: float) -> Signal:
        spec = TIMEFRAME_SPECS[timeframe]
        if len(candles) < spec.min_bars:
            raise InsufficientDataError(symbol, timeframe, len(candles), spec.min_bars)

        snap, structure = self.snapshot(symbol, timeframe, candles, price)
        t = self._tally(snap, structure, price)

        diff = t.bullish - t.bearish
        if diff >= self.cfg.direction_threshold:
            direction = LONG
        elif diff <= -self.cfg.direction_threshold:
            direction = SHORT
        else:
            direction = NEUTRAL

        weight = self.accuracy.get_weight(symbol, timeframe)
        confidence = clamp(
            t.confidence * spec.reliability_weight * weight,
            self.cfg.confidence_floor,
            self.cfg.confidence_ceiling,
        )
        stop, target = self.risk.levels(direction, price, snap.atr, timeframe, snap.supports, snap.resistances)

        log.debug(
            "scored symbol=%s tf=%s dir=%s bull=%d bear=%d raw_conf=%.1f conf=%.1f weight=%.3f",
            symbol, timeframe, direction, t.bullish, t.bearish, t.confidence, confidence, weight,
        )
        return Signal(
            symbol=symbol,
            timeframe=timeframe,
            direction=direction,
            confidence=confidence,
            entry_price=price,
            stop_loss=stop,
            take_profit=target,
            success_probability=success_probability(confidence, timeframe, direction, self.cfg),
            timestamp=candles[-1].time,
            indicators=snap,
            structure=structure,
            bullish_score=t.bullish,
            bearish_score=t.bearish,
            stage=STAGE_SCORED,
            score_breakdown="\n".join(t.lines),
        )

    def _tally(self, snap: IndicatorSnapshot, structure: MarketStructure, price: float) -> _Tally:
        c = self.cfg
        t = _Tally(c.confidence_base)

        rsi_v = snap.rsi
        if rsi_v < c.rsi_extreme_low:
            t.bull(f"RSI {rsi_v:.1f} <{c.rsi_extreme_low:g}", c.rsi_extreme_points, c.rsi_extreme_confidence)
        elif rsi_v < c.rsi_low:
            t.bull(f"RSI {rsi_v:.1f} <{c.rsi_low:g}", c.rsi_points, c.rsi_confidence)
        elif rsi_v < c.rsi_mild_low:
            t.bull(f"RSI {rsi_v:.1f} <{c.rsi_mild_low:g}", c.rsi_mild_points)
        elif rsi_v > c.rsi_extreme_high:
            t.bear(f"RSI {rsi_v:.1f} >{c.rsi_extreme_high:g}", c.rsi_extreme_points, c.rsi_extreme_confidence)
        elif rsi_v > c.rsi_high:
            t.bear(f"RSI {rsi_v:.1f} >{c.rsi_high:g}", c.rsi_points, c.rsi_confidence)
        elif rsi_v > c.rsi_mild_high:
            t.bear(f"RSI {rsi_v:.1f} >{c.rsi_mild_high:g}", c.rsi_mild_points)

        hist = snap.macd.histogram
        strong = abs(hist) > price * c.macd_strong_pct / 100.0
        if hist > 0:
            if strong:
                t.bull("MACD hist strong >0", c.macd_strong_points, c.macd_strong_confidence)
            else:
                t.bull("MACD hist >0", c.macd_points, c.macd_confidence)
        elif hist < 0:
            if strong:
                t.bear("MACD hist strong <0", c.macd_strong_points, c.macd_strong_confidence)
            else:
                t.bear("MACD hist <0", c.macd_points, c.macd_confidence)

        e = snap.ema
        near = price > 0 and abs(price - e.short) / price * 100.0 <= c.ema_proximity_pct
        s = c.ema_proximity_boost if near else 1.0
        if e.short > e.medium > e.long:
            t.bull("EMA stack up" + (" near" if near else ""), int(math.floor(c.ema_points * s)), math.floor(c.ema_confidence * s))
        elif e.short < e.medium < e.long:
            t.bear("EMA stack down" + (" near" if near else ""), int(math.floor(c.ema_points * s)), math.floor(c.ema_confidence * s))

        a = snap.adx
        if a.adx > c.adx_moderate and a.plus_di != a.minus_di:
            if a.adx > c.adx_strong:
                pts, conf, label = c.adx_strong_points, c.adx_strong_confidence, f"ADX {a.adx:.1f} >{c.adx_strong:g}"
            else:
                pts, conf, label = c.adx_moderate_points, c.adx_moderate_confidence, f"ADX {a.adx:.1f} >{c.adx_moderate:g}"
            if a.plus_di > a.minus_di:
                t.bull(label + " +DI", pts, conf)
            else:
                t.bear(label + " -DI", pts, conf)

        pb = snap.bollinger.percent_b
        if pb < c.bb_extreme_low:
            t.bull(f"%B {pb:.1f} <{c.bb_extreme_low:g}", c.bb_extreme_points, c.bb_extreme_confidence)
        elif pb < c.bb_low:
            t.bull(f"%B {pb:.1f} <{c.bb_low:g}", c.bb_points)
        elif pb > c.bb_extreme_high:
            t.bear(f"%B {pb:.1f} >{c.bb_extreme_high:g}", c.bb_extreme_points, c.bb_extreme_confidence)
        elif pb > c.bb_high:
            t.bear(f"%B {pb:.1f} >{c.bb_high:g}", c.bb_points)

        k, d = snap.stochastic.k, snap.stochastic.d
        if k < c.stoch_low:
            if d < c.stoch_low:
                t.bull("Stoch K,D oversold", c.stoch_double_points, c.stoch_double_confidence)
            else:
                t.bull("Stoch K oversold", c.stoch_single_points)
        elif k > c.stoch_high:
            if d > c.stoch_high:
                t.bear("Stoch K,D overbought", c.stoch_double_points, c.stoch_double_confidence)
            else:
                t.bear("Stoch K overbought", c.stoch_single_points)

        pts = int(math.floor(structure.strength * c.structure_score_factor))
        conf = math.floor(structure.strength * c.structure_confidence_factor)
        if structure.bias == BULLISH:
            t.bull(f"Structure bullish {structure.strength:.0f}", pts, conf)
        elif structure.bias == BEARISH:
            t.bear(f"Structure bearish {structure.strength:.0f}", pts, conf)

        if structure.volume_profile == STRONG:
            # points follow the bias, the confidence lift does not
            if structure.bias == BULLISH:
                t.bull("Volume strong", c.volume_strong_points)
            elif structure.bias == BEARISH:
                t.bear("Volume strong", c.volume_strong_points)
            t.conf("Volume strong", c.volume_strong_confidence)
        elif structure.volume_profile == WEAK:
            t.conf("Volume weak", -c.volume_weak_penalty)

        if structure.regime == TRENDING:
            t.conf("Regime trending", c.regime_trending_bonus)
        elif structure.regime == VOLATILE:
            t.conf("Regime volatile", -c.regime_volatile_penalty)

        if price > 0 and math.isfinite(snap.atr):
            atr_pct = snap.atr / price * 100.0
            if atr_pct > c.volatility_high_pct:
                t.conf(f"ATR {atr_pct:.2f}% high", -c.volatility_high_penalty)
            elif atr_pct < c.volatility_low_pct:
                t.conf(f"ATR {atr_pct:.2f}% low", c.volatility_low_bonus)

        return t
