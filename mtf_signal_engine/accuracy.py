from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .errors import InvalidInputError
from .models import LONG, SHORT, AccuracyRecord, Prediction
from .timeframes import TIMEFRAME_SPECS

log = logging.getLogger("accuracy")

TARGET_WIN_RATE = 70.0
MIN_WEIGHT = 0.5
MAX_WEIGHT = 1.5

PRUNE_AFTER_S = 7 * 24 * 3600


def _profit_loss_pct(direction: str, entry: float, price: float) -> float:
    if direction == LONG:
        return (price - entry) / entry * 100.0
    return (entry - price) / entry * 100.0


def resolve(pred: Prediction, price: float, now: float) -> Optional[bool]:
    """Outcome of an open prediction at `price`, or None while it is still live.

    A stop or target touch settles it first; past the timeframe's hold limit
    it counts as correct only when in profit.
    """
    if pred.direction == LONG:
        if price <= pred.stop_loss:
            return False
        if price >= pred.take_profit:
            return True
    elif pred.direction == SHORT:
        if price >= pred.stop_loss:
            return False
        if price <= pred.take_profit:
            return True
    max_hold_s = TIMEFRAME_SPECS[pred.timeframe].max_hold_minutes * 60
    if now - pred.opened_at > max_hold_s:
        return _profit_loss_pct(pred.direction, pred.entry_price, price) > 0
    return None


class AccuracyFeedbackStore:
    """In-memory outcome counters per (symbol, timeframe).

    Outcomes arrive either directly via `record_outcome` or by resolving
    predictions opened with `record_prediction` against later prices.
    """

    def __init__(self):
        self._records: Dict[Tuple[str, str], AccuracyRecord] = {}
        self._predictions: Dict[str, Prediction] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _apply(self, symbol: str, timeframe: str, was_correct: bool) -> AccuracyRecord:
        key = (symbol, timeframe)
        rec = self._records.get(key)
        if rec is None:
            rec = AccuracyRecord(symbol=symbol, timeframe=timeframe)
            self._records[key] = rec
        rec.total_count += 1
        if was_correct:
            rec.correct_count += 1
        rec.win_rate = rec.correct_count / rec.total_count * 100.0
        rec.adaptive_weight = min(MAX_WEIGHT, max(MIN_WEIGHT, rec.win_rate / TARGET_WIN_RATE))
        return replace(rec)

    def record_outcome(self, symbol: str, timeframe: str, was_correct: bool) -> AccuracyRecord:
        with self._lock:
            snapshot = self._apply(symbol, timeframe, was_correct)
        log.debug(
            "outcome symbol=%s tf=%s correct=%s win_rate=%.1f weight=%.3f",
            symbol, timeframe, was_correct, snapshot.win_rate, snapshot.adaptive_weight,
        )
        return snapshot

    def get_weight(self, symbol: str, timeframe: str) -> float:
        with self._lock:
            rec = self._records.get((symbol, timeframe))
            return rec.adaptive_weight if rec is not None else 1.0

    def get_record(self, symbol: str, timeframe: str) -> Optional[AccuracyRecord]:
        with self._lock:
            rec = self._records.get((symbol, timeframe))
            return replace(rec) if rec is not None else None

    def records(self) -> List[AccuracyRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------
    # Predictions

    def record_prediction(
        self,
        symbol: str,
        timeframe: str,
        direction: str,
        entry_price: float,
        stop_loss: float,
        take_profit: float,
        confidence: float,
        opened_at: Optional[float] = None,
    ) -> Prediction:
        if direction not in (LONG, SHORT):
            raise InvalidInputError(f"only LONG/SHORT calls can be tracked, got {direction!r}")
        if timeframe not in TIMEFRAME_SPECS:
            raise InvalidInputError(f"Unsupported timeframe: {timeframe!r}")
        with self._lock:
            pred = Prediction(
                id=f"{symbol}_{timeframe}_{next(self._ids)}",
                symbol=symbol,
                timeframe=timeframe,
                direction=direction,
                entry_price=float(entry_price),
                stop_loss=float(stop_loss),
                take_profit=float(take_profit),
                confidence=float(confidence),
                opened_at=time.time() if opened_at is None else float(opened_at),
            )
            self._predictions[pred.id] = pred
            snapshot = replace(pred)
        log.debug(
            "prediction_open id=%s dir=%s entry=%s sl=%s tp=%s",
            snapshot.id, direction, snapshot.entry_price, snapshot.stop_loss, snapshot.take_profit,
        )
        return snapshot

    def check_predictions(self, symbol: str, current_price: float, now: Optional[float] = None) -> List[Prediction]:
        """Settle the symbol's open predictions at `current_price`; returns the ones that closed."""
        now = time.time() if now is None else float(now)
        closed: List[Prediction] = []
        with self._lock:
            for pred in self._predictions.values():
                if pred.symbol != symbol or pred.resolved:
                    continue
                outcome = resolve(pred, current_price, now)
                if outcome is None:
                    continue
                pred.resolved = True
                pred.was_correct = outcome
                pred.exit_price = float(current_price)
                pred.closed_at = now
                pred.profit_loss_pct = _profit_loss_pct(pred.direction, pred.entry_price, current_price)
                self._apply(pred.symbol, pred.timeframe, outcome)
                closed.append(replace(pred))
        for pred in closed:
            log.info(
                "prediction_closed id=%s dir=%s correct=%s exit=%s pnl_pct=%.2f",
                pred.id, pred.direction, pred.was_correct, pred.exit_price, pred.profit_loss_pct,
            )
        return closed

    def predictions(self, symbol: Optional[str] = None, *, open_only: bool = False) -> List[Prediction]:
        with self._lock:
            return [
                replace(p)
                for p in self._predictions.values()
                if (symbol is None or p.symbol == symbol) and not (open_only and p.resolved)
            ]

    def prune_predictions(self, max_age_s: float = PRUNE_AFTER_S, now: Optional[float] = None) -> int:
        """Drop resolved predictions opened more than `max_age_s` ago."""
        cutoff = (time.time() if now is None else float(now)) - max_age_s
        with self._lock:
            stale = [pid for pid, p in self._predictions.items() if p.resolved and p.opened_at < cutoff]
            for pid in stale:
                del self._predictions[pid]
        if stale:
            log.debug("predictions_pruned count=%d", len(stale))
        return len(stale)
