from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

from .config import RiskConfig
from .models import LONG, SHORT
from .timeframes import TIMEFRAME_SPECS


class RiskCalculator:
    """Stop-loss / take-profit from ATR, the timeframe risk multiplier and nearby levels."""

    def __init__(self, config: Optional[RiskConfig] = None):
        self.cfg = config if config is not None else RiskConfig()

    def neutral_levels(self, entry: float) -> Tuple[float, float]:
        return (
            entry * (1.0 - self.cfg.neutral_stop_pct / 100.0),
            entry * (1.0 + self.cfg.neutral_target_pct / 100.0),
        )

    def _percent_levels(self, direction: str, entry: float, timeframe: str) -> Tuple[float, float]:
        spec = TIMEFRAME_SPECS[timeframe]
        sl = entry * spec.stop_loss_pct / 100.0
        tp = entry * spec.take_profit_pct / 100.0
        if direction == LONG:
            return entry - sl, entry + tp
        return entry + sl, entry - tp

    def levels(
        self,
        direction: str,
        entry: float,
        atr: float,
        timeframe: str,
        supports: Sequence[float] = (),
        resistances: Sequence[float] = (),
    ) -> Tuple[float, float]:
        if direction not in (LONG, SHORT):
            return self.neutral_levels(entry)

        spec = TIMEFRAME_SPECS[timeframe]
        if atr is None or not math.isfinite(atr) or atr <= 0:
            risk = entry * spec.stop_loss_pct / 100.0
        else:
            risk = atr * spec.risk_multiplier
        reward = risk * self.cfg.reward_ratio
        off = self.cfg.level_offset_pct / 100.0
        stop_band = entry * self.cfg.stop_band_pct / 100.0
        target_band = entry * self.cfg.target_band_pct / 100.0

        if direction == LONG:
            stop, target = entry - risk, entry + reward
            below = [s for s in supports if stop < s < entry and entry - s <= stop_band]
            if below:
                stop = max(below) * (1.0 - off)
            above = [r for r in resistances if entry < r < target and r - entry <= target_band]
            if above:
                snapped = min(above) * (1.0 - off)
                if snapped > entry:
                    target = snapped
            ok = 0 < stop < entry < target
        else:
            stop, target = entry + risk, entry - reward
            above = [r for r in resistances if entry < r < stop and r - entry <= stop_band]
            if above:
                stop = min(above) * (1.0 + off)
            below = [s for s in supports if target < s < entry and entry - s <= target_band]
            if below:
                snapped = max(below) * (1.0 + off)
                if snapped < entry:
                    target = snapped
            ok = 0 < target < entry < stop

        if not ok:
            return self._percent_levels(direction, entry, timeframe)
        return stop, target
