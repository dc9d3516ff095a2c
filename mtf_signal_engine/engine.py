from __future__ import annotations

import logging
import math
import numbers
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Tuple

from .accuracy import AccuracyFeedbackStore
from .cache import IndicatorCache
from .config import Config
from .errors import InsufficientDataError, InvalidInputError
from .harmonizer import Harmonizer
from .models import NEUTRAL, STAGE_FALLBACK, AccuracyRecord, Candle, EngineStats, HarmonyReport, Prediction, Signal
from .risk import RiskCalculator
from .scoring import ScoringEngine
from .structure import MarketStructureClassifier
from .timeframes import TIMEFRAMES, parse_timeframe

log = logging.getLogger("engine")

Key = Tuple[str, str]


def _check_symbol(symbol) -> str:
    if not isinstance(symbol, str) or not symbol.strip():
        raise InvalidInputError(f"symbol must be a non-empty string, got {symbol!r}")
    return symbol.strip()


def _check_price(price) -> float:
    if isinstance(price, bool) or not isinstance(price, numbers.Real):
        raise InvalidInputError(f"price must be a number, got {type(price).__name__}")
    price = float(price)
    if not math.isfinite(price) or price <= 0:
        raise InvalidInputError(f"price must be finite and positive, got {price!r}")
    return price


def _check_candles(candles: Iterable[Candle]) -> Tuple[Candle, ...]:
    out = tuple(candles)
    prev_time = None
    for i, c in enumerate(out):
        if not isinstance(c, Candle):
            raise InvalidInputError(f"candle #{i} is {type(c).__name__}, expected Candle")
        for name in ("open", "high", "low", "close", "volume"):
            if not math.isfinite(getattr(c, name)):
                raise InvalidInputError(f"candle #{i} t={c.time} has non-finite {name}")
        if prev_time is not None and c.time <= prev_time:
            what = "duplicate" if c.time == prev_time else "out-of-order"
            raise InvalidInputError(f"candle #{i} t={c.time} is {what} (previous t={prev_time})")
        prev_time = c.time
    return out


class SignalEngine:
    """Facade: stored series, per-key in-flight dedup, parallel scoring, harmonization."""

    def __init__(self, config: Optional[Config] = None, *, executor: Optional[ThreadPoolExecutor] = None):
        self.cfg = config if config is not None else Config()
        self.cache = IndicatorCache(self.cfg.engine.cache_max_entries)
        self.accuracy = AccuracyFeedbackStore()
        self.risk = RiskCalculator(self.cfg.risk)
        self.scoring = ScoringEngine(
            self.cfg.scoring,
            self.cfg.indicators,
            accuracy=self.accuracy,
            cache=self.cache,
            classifier=MarketStructureClassifier(self.cfg.indicators),
            risk=self.risk,
        )
        self.harmonizer = Harmonizer(self.cfg.harmonizer, self.cfg.scoring, self.risk)

        self._own_executor = executor is None
        self._executor = executor if executor is not None else ThreadPoolExecutor(
            max_workers=max(1, int(self.cfg.engine.max_workers)),
            thread_name_prefix="signal",
        )
        self._lock = threading.Lock()
        self._series: Dict[Key, Tuple[Candle, ...]] = {}
        self._versions: Dict[Key, int] = {}
        self._in_flight: Dict[Key, Tuple[int, Future]] = {}
        self._last: Dict[Key, Signal] = {}
        self._harmony: Dict[str, HarmonyReport] = {}
        self._dedup_hits = 0

    @classmethod
    def from_config(cls, cfg: Config) -> "SignalEngine":
        return cls(cfg)

    # ------------------------------------------------------------------
    # Inputs

    def update(self, symbol: str, timeframe: str, candles: Iterable[Candle]) -> None:
        symbol = _check_symbol(symbol)
        timeframe = parse_timeframe(timeframe)
        series = _check_candles(candles)
        key = (symbol, timeframe)
        with self._lock:
            self._series[key] = series
            self._versions[key] = self._versions.get(key, 0) + 1
        # a replaced series may keep its length and last time
        self.cache.invalidate(symbol, timeframe)
        log.debug("series_update symbol=%s tf=%s bars=%d", symbol, timeframe, len(series))

    def report_outcome(self, symbol: str, timeframe: str, was_correct: bool) -> AccuracyRecord:
        symbol = _check_symbol(symbol)
        timeframe = parse_timeframe(timeframe)
        return self.accuracy.record_outcome(symbol, timeframe, bool(was_correct))

    def record_prediction(self, signal: Signal, opened_at: Optional[float] = None) -> Optional[Prediction]:
        """Track a directional signal until its stop, target or hold limit settles it."""
        if signal.stage == STAGE_FALLBACK or signal.direction == NEUTRAL:
            return None
        return self.accuracy.record_prediction(
            signal.symbol,
            signal.timeframe,
            signal.direction,
            signal.entry_price,
            signal.stop_loss,
            signal.take_profit,
            signal.confidence,
            opened_at=opened_at,
        )

    def check_predictions(self, symbol: str, current_price: float, now: Optional[float] = None) -> List[Prediction]:
        symbol = _check_symbol(symbol)
        price = _check_price(current_price)
        return self.accuracy.check_predictions(symbol, price, now=now)

    # ------------------------------------------------------------------
    # Signals

    def compute(self, symbol: str, timeframe: str, current_price: float) -> Signal:
        symbol = _check_symbol(symbol)
        timeframe = parse_timeframe(timeframe)
        price = _check_price(current_price)
        sig, _ = self._compute((symbol, timeframe), price)
        return sig

    def compute_all(self, symbol: str, current_price: float) -> Dict[str, Signal]:
        symbol = _check_symbol(symbol)
        price = _check_price(current_price)

        futures = [(tf, self._executor.submit(self._compute, (symbol, tf), price)) for tf in TIMEFRAMES]
        raw: Dict[str, Signal] = {}
        versions: Dict[str, int] = {}
        for tf, fut in futures:
            raw[tf], versions[tf] = fut.result()

        harmonized, report = self.harmonizer.harmonize(raw)
        with self._lock:
            for tf, sig in harmonized.items():
                if self._versions.get((symbol, tf), 0) == versions[tf]:
                    self._last[(symbol, tf)] = sig
            self._harmony[symbol] = report
        log.debug(
            "compute_all symbol=%s price=%s dominant=%s dominance=%.2f adjustments=%d",
            symbol, price, report.dominant_direction, report.dominance, len(report.adjustments),
        )
        return harmonized

    def _compute(self, key: Key, price: float) -> Tuple[Signal, int]:
        with self._lock:
            candles = self._series.get(key, ())
            version = self._versions.get(key, 0)
            running = self._in_flight.get(key)
            if running is not None and running[0] == version:
                self._dedup_hits += 1
                fut = running[1]
                owner = False
            else:
                fut = Future()
                self._in_flight[key] = (version, fut)
                owner = True

        if not owner:
            log.debug("computation_skipped symbol=%s tf=%s version=%d", key[0], key[1], version)
            return fut.result()

        try:
            sig = self._score(key, candles, price)
        except BaseException as e:
            fut.set_exception(e)
            with self._lock:
                if self._in_flight.get(key, (None, None))[1] is fut:
                    del self._in_flight[key]
            raise

        fut.set_result((sig, version))
        with self._lock:
            if self._in_flight.get(key, (None, None))[1] is fut:
                del self._in_flight[key]
            if self._versions.get(key, 0) == version:
                self._last[key] = sig
            else:
                log.debug("stale_result symbol=%s tf=%s version=%d", key[0], key[1], version)
        return sig, version

    def _score(self, key: Key, candles: Tuple[Candle, ...], price: float) -> Signal:
        symbol, timeframe = key
        try:
            return self.scoring.score(symbol, timeframe, candles, price)
        except InsufficientDataError as e:
            log.debug("fallback symbol=%s tf=%s have=%d need=%d", symbol, timeframe, e.have, e.need)
            ts = candles[-1].time if candles else 0
            return self.scoring.neutral_signal(symbol, timeframe, price, timestamp=ts)

    # ------------------------------------------------------------------
    # Introspection

    def last_signal(self, symbol: str, timeframe: str) -> Optional[Signal]:
        with self._lock:
            return self._last.get((symbol, timeframe))

    def last_harmony(self, symbol: str) -> Optional[HarmonyReport]:
        with self._lock:
            return self._harmony.get(symbol)

    def series(self, symbol: str, timeframe: str) -> List[Candle]:
        with self._lock:
            return list(self._series.get((symbol, timeframe), ()))

    def stats(self) -> EngineStats:
        with self._lock:
            tracked = {k[0] for k in self._series}
            n_series = len(self._series)
            in_flight = len(self._in_flight)
            dedup = self._dedup_hits
        return EngineStats(
            cache_size=len(self.cache),
            tracked_symbols=len(tracked),
            accuracy_records=len(self.accuracy),
            series=n_series,
            in_flight=in_flight,
            dedup_hits=dedup,
        )

    def clear_cache(self) -> None:
        self.cache.clear()

    def close(self) -> None:
        if self._own_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "SignalEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
