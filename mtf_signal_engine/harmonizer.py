from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Tuple

from .config import HarmonizerConfig, ScoringConfig
from .models import (
    DIRECTIONS,
    NEUTRAL,
    STAGE_FALLBACK,
    STAGE_HARMONIZED,
    HarmonyAdjustment,
    HarmonyReport,
    Signal,
)
from .risk import RiskCalculator
from .scoring import clamp, success_probability
from .timeframes import TIMEFRAME_SPECS, TIMEFRAMES, TIMEFRAMES_DESC

log = logging.getLogger("harmonizer")

REASSIGN = "REASSIGN"
BLEND = "BLEND"


def influence_score(sig: Signal) -> float:
    """Deterministic per-signal gate in [0, 100)."""
    return (sig.entry_price * TIMEFRAME_SPECS[sig.timeframe].ordinal) % 100.0


class Harmonizer:
    """Cross-timeframe reconciliation of one symbol's signals.

    Longer timeframes push their direction and confidence down onto the
    next few shorter ones, then a dominant direction (weighted vote) may
    flip weak dissenters. Signals recovered from missing data are left as-is.
    """

    def __init__(
        self,
        config: Optional[HarmonizerConfig] = None,
        scoring_config: Optional[ScoringConfig] = None,
        risk: Optional[RiskCalculator] = None,
    ):
        self.cfg = config if config is not None else HarmonizerConfig()
        self.scoring_cfg = scoring_config if scoring_config is not None else ScoringConfig()
        self.risk = risk if risk is not None else RiskCalculator()

    def vote_weight(self, timeframe: str) -> int:
        pos = TIMEFRAMES_DESC.index(timeframe)
        weights = self.cfg.vote_weights or []
        return int(weights[pos]) if pos < len(weights) else 1

    def vote(self, signals: Mapping[str, Signal]) -> Tuple[str, float]:
        tally = {d: 0 for d in DIRECTIONS}
        for tf, sig in signals.items():
            tally[sig.direction] += self.vote_weight(tf)
        total = sum(tally.values())
        if total == 0:
            return NEUTRAL, 0.0
        best = max(tally.values())
        leaders = [d for d, w in tally.items() if w == best]
        dominant = leaders[0] if len(leaders) == 1 else NEUTRAL
        return dominant, tally[dominant] / total

    def _clamp(self, confidence: float) -> float:
        return clamp(confidence, self.scoring_cfg.confidence_floor, self.scoring_cfg.confidence_ceiling)

    def _reassign(self, sig: Signal, direction: str, confidence: float) -> Signal:
        stop, target = self.risk.levels(
            direction,
            sig.entry_price,
            sig.indicators.atr,
            sig.timeframe,
            sig.indicators.supports,
            sig.indicators.resistances,
        )
        return replace(sig, direction=direction, confidence=self._clamp(confidence), stop_loss=stop, take_profit=target)

    def harmonize(self, signals: Mapping[str, Signal]) -> Tuple[Dict[str, Signal], HarmonyReport]:
        cfg = self.cfg
        current: Dict[str, Signal] = {tf: s for tf, s in signals.items() if s.stage != STAGE_FALLBACK}
        dominant, dominance = self.vote(current)
        adjustments: List[HarmonyAdjustment] = []

        def note(tf: str, source: str, kind: str, before: Signal, after: Signal) -> None:
            adjustments.append(
                HarmonyAdjustment(
                    timeframe=tf,
                    source=source,
                    kind=kind,
                    before_direction=before.direction,
                    after_direction=after.direction,
                    before_confidence=before.confidence,
                    after_confidence=after.confidence,
                )
            )

        for i, high_tf in enumerate(TIMEFRAMES_DESC):
            if high_tf not in current:
                continue
            for distance in range(1, cfg.reach + 1):
                j = i + distance
                if j >= len(TIMEFRAMES_DESC):
                    break
                low_tf = TIMEFRAMES_DESC[j]
                lower = current.get(low_tf)
                if lower is None:
                    continue
                higher = current[high_tf]

                w = max(cfg.min_blend_weight, cfg.blend_weight / distance)
                blended = lower.confidence * (1.0 - w) + higher.confidence * w
                threshold = (higher.confidence - cfg.confidence_gate) * cfg.threshold_scale / distance

                if (
                    higher.direction != NEUTRAL
                    and higher.direction != lower.direction
                    and higher.confidence > cfg.confidence_gate
                    and influence_score(lower) < threshold
                ):
                    updated = self._reassign(lower, higher.direction, blended)
                    log.debug(
                        "reassign tf=%s from=%s dir=%s->%s conf=%.1f->%.1f",
                        low_tf, high_tf, lower.direction, updated.direction, lower.confidence, updated.confidence,
                    )
                    note(low_tf, high_tf, REASSIGN, lower, updated)
                    current[low_tf] = updated
                    continue

                if higher.direction == lower.direction:
                    blended = max(lower.confidence, blended)
                blended = self._clamp(blended)
                if blended != lower.confidence:
                    updated = replace(lower, confidence=blended)
                    note(low_tf, high_tf, BLEND, lower, updated)
                    current[low_tf] = updated

        if dominant != NEUTRAL and dominance >= cfg.dominance_min:
            gate = (dominance - 0.5) * 100.0
            for tf in TIMEFRAMES_DESC:
                sig = current.get(tf)
                if sig is None or sig.direction == dominant or sig.confidence >= cfg.confidence_gate:
                    continue
                if influence_score(sig) < gate:
                    updated = self._reassign(sig, dominant, sig.confidence)
                    log.debug("reassign tf=%s from=dominant dir=%s->%s dominance=%.2f", tf, sig.direction, dominant, dominance)
                    note(tf, "dominant", REASSIGN, sig, updated)
                    current[tf] = updated

        out: Dict[str, Signal] = {}
        for tf in TIMEFRAMES:
            if tf not in signals:
                continue
            sig = current.get(tf)
            if sig is None:
                out[tf] = signals[tf]  # fallback, untouched
                continue
            out[tf] = replace(
                sig,
                success_probability=success_probability(sig.confidence, tf, sig.direction, self.scoring_cfg),
                stage=STAGE_HARMONIZED,
            )

        log.debug("harmonized dominant=%s dominance=%.2f adjustments=%d", dominant, dominance, len(adjustments))
        return out, HarmonyReport(dominant_direction=dominant, dominance=dominance, adjustments=adjustments)
