from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from .errors import InvalidInputError


@dataclass(frozen=True)
class TimeframeSpec:
    name: str
    minutes: int
    ordinal: int  # 1 = shortest
    reliability_weight: float
    risk_multiplier: float
    stop_loss_pct: float  # ATR-free fallback distance, percent of entry
    take_profit_pct: float
    min_bars: int
    max_hold_minutes: int  # open predictions expire after this


_SPECS = (
    TimeframeSpec("1m", 1, 1, 0.30, 0.5, 0.3, 0.6, 50, 5),
    TimeframeSpec("5m", 5, 2, 0.40, 0.8, 0.5, 1.0, 50, 25),
    TimeframeSpec("15m", 15, 3, 0.50, 1.0, 0.8, 1.6, 50, 75),
    TimeframeSpec("30m", 30, 4, 0.60, 1.2, 1.0, 2.0, 50, 150),
    TimeframeSpec("1h", 60, 5, 0.70, 1.5, 1.5, 3.0, 50, 360),
    TimeframeSpec("4h", 240, 6, 0.80, 2.0, 2.0, 4.0, 50, 1440),
    TimeframeSpec("1d", 1440, 7, 0.90, 2.5, 3.0, 6.0, 50, 10080),
    TimeframeSpec("3d", 4320, 8, 0.95, 3.0, 4.0, 8.0, 50, 30240),
    TimeframeSpec("1w", 10080, 9, 0.98, 4.0, 5.0, 10.0, 20, 86400),
    TimeframeSpec("1M", 43200, 10, 1.00, 5.0, 8.0, 16.0, 12, 259200),
)

TIMEFRAME_SPECS: Dict[str, TimeframeSpec] = {s.name: s for s in _SPECS}
TIMEFRAMES: Tuple[str, ...] = tuple(s.name for s in _SPECS)  # ascending duration
TIMEFRAMES_DESC: Tuple[str, ...] = tuple(reversed(TIMEFRAMES))

# Success probability gets a small lift for LONG calls on these.
LONG_HORIZON = frozenset({"1d", "3d", "1w", "1M"})


def parse_timeframe(tf: str) -> str:
    """Validate a timeframe name. Case matters: '1m' is a minute, '1M' a month."""
    if not isinstance(tf, str):
        raise InvalidInputError(f"timeframe must be a string, got {type(tf).__name__}")
    tf = tf.strip()
    if tf not in TIMEFRAME_SPECS:
        raise InvalidInputError(f"Unsupported timeframe: {tf!r} (expected one of {', '.join(TIMEFRAMES)})")
    return tf


def tf_minutes(tf: str) -> int:
    return TIMEFRAME_SPECS[parse_timeframe(tf)].minutes


def tf_seconds(tf: str) -> int:
    return tf_minutes(tf) * 60
