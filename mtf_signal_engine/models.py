from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

LONG = "LONG"
SHORT = "SHORT"
NEUTRAL = "NEUTRAL"
DIRECTIONS = (LONG, SHORT, NEUTRAL)

# Signal lifecycle (NoSignal -> Scored -> Harmonized); FALLBACK marks the
# recovered not-enough-data path.
STAGE_FALLBACK = "FALLBACK"
STAGE_SCORED = "SCORED"
STAGE_HARMONIZED = "HARMONIZED"


@dataclass(frozen=True)
class Candle:
    time: int  # unix seconds, bar open
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class MacdReading:
    value: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0


@dataclass(frozen=True)
class EmaReading:
    short: float
    medium: float
    long: float


@dataclass(frozen=True)
class StochasticReading:
    k: float = 50.0
    d: float = 50.0


@dataclass(frozen=True)
class BollingerReading:
    upper: float
    middle: float
    lower: float
    width: float = 0.04
    percent_b: float = 50.0


@dataclass(frozen=True)
class AdxReading:
    adx: float = 25.0
    plus_di: float = 25.0
    minus_di: float = 25.0


@dataclass(frozen=True)
class SupportResistance:
    supports: Tuple[float, ...] = ()
    resistances: Tuple[float, ...] = ()


@dataclass(frozen=True)
class IndicatorSnapshot:
    rsi: float
    macd: MacdReading
    ema: EmaReading
    stochastic: StochasticReading
    bollinger: BollingerReading
    adx: AdxReading
    atr: float
    supports: Tuple[float, ...] = ()
    resistances: Tuple[float, ...] = ()

    @classmethod
    def neutral(cls, price: float) -> "IndicatorSnapshot":
        """Snapshot carried by signals that were never scored."""
        return cls(
            rsi=50.0,
            macd=MacdReading(),
            ema=EmaReading(short=price, medium=price, long=price),
            stochastic=StochasticReading(),
            bollinger=BollingerReading(upper=price * 1.02, middle=price, lower=price * 0.98),
            adx=AdxReading(),
            atr=price * 0.02,
        )


@dataclass(frozen=True)
class MarketStructure:
    regime: str = "RANGING"  # TRENDING | RANGING | VOLATILE
    bias: str = "NEUTRAL"  # BULLISH | BEARISH | NEUTRAL
    strength: float = 0.0  # 0..100
    volume_profile: str = "NEUTRAL"  # STRONG | WEAK | NEUTRAL


@dataclass(frozen=True)
class Signal:
    symbol: str
    timeframe: str
    direction: str  # LONG | SHORT | NEUTRAL
    confidence: float
    entry_price: float
    stop_loss: float
    take_profit: float
    success_probability: float
    timestamp: int  # time of the last scored candle
    indicators: IndicatorSnapshot
    structure: Optional[MarketStructure] = None
    bullish_score: float = 0.0
    bearish_score: float = 0.0
    stage: str = STAGE_SCORED
    score_breakdown: str = ""

    @property
    def risk_reward(self) -> Optional[float]:
        risk = abs(self.entry_price - self.stop_loss)
        if risk == 0:
            return None
        return abs(self.take_profit - self.entry_price) / risk


@dataclass
class AccuracyRecord:
    symbol: str
    timeframe: str
    correct_count: int = 0
    total_count: int = 0
    win_rate: float = 0.0
    adaptive_weight: float = 1.0


@dataclass
class Prediction:
    """A published call waiting for its stop, its target or its hold limit."""

    id: str
    symbol: str
    timeframe: str
    direction: str
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: float
    opened_at: float  # unix seconds
    resolved: bool = False
    was_correct: Optional[bool] = None
    exit_price: Optional[float] = None
    closed_at: Optional[float] = None
    profit_loss_pct: Optional[float] = None


@dataclass(frozen=True)
class HarmonyAdjustment:
    timeframe: str
    source: str  # timeframe that exerted the influence, or "dominant"
    kind: str  # REASSIGN | BLEND
    before_direction: str
    after_direction: str
    before_confidence: float
    after_confidence: float


@dataclass(frozen=True)
class HarmonyReport:
    dominant_direction: str = NEUTRAL
    dominance: float = 0.0
    adjustments: List[HarmonyAdjustment] = field(default_factory=list)


@dataclass(frozen=True)
class EngineStats:
    cache_size: int
    tracked_symbols: int
    accuracy_records: int
    series: int
    in_flight: int
    dedup_hits: int
