from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _csv_env(env_key: str) -> Optional[List[str]]:
    raw = os.getenv(env_key)
    if not raw:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class AppConfig:
    name: str = "MTF Signal Engine"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    type: str = "binance"
    market: str = "spot"  # futures|spot
    symbols: List[str] = None
    timeframes: List[str] = None
    warmup_candles: int = 300
    rest_timeout_s: int = 20
    ws_heartbeat_s: int = 20
    warmup_concurrency: int = 5


@dataclass
class EngineConfig:
    max_workers: int = 10  # one per timeframe
    cache_max_entries: int = 4096


@dataclass
class IndicatorConfig:
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    ema_short: int = 12
    ema_medium: int = 26
    ema_long: int = 50
    stoch_k: int = 14
    stoch_d: int = 3
    bb_period: int = 20
    bb_mult: float = 2.0
    adx_period: int = 14
    atr_period: int = 14

    # support / resistance
    sr_sensitivity: int = 3
    sr_tolerance_pct: float = 0.5
    sr_volume_factor: float = 1.2
    sr_volume_window: int = 7
    sr_lookback: int = 100
    sr_max_levels: int = 3

    # market structure
    structure_window: int = 20
    structure_volume_recent: int = 5
    structure_min_bars: int = 10
    trend_adx: float = 30.0
    volatile_atr_pct: float = 4.0
    di_deadband: float = 5.0
    volume_strong_ratio: float = 1.5
    volume_weak_ratio: float = 0.7


@dataclass
class ScoringConfig:
    """Point table of the scoring model. Empirical values, tunable."""

    # RSI
    rsi_extreme_low: float = 20.0
    rsi_low: float = 30.0
    rsi_mild_low: float = 40.0
    rsi_mild_high: float = 60.0
    rsi_high: float = 70.0
    rsi_extreme_high: float = 80.0
    rsi_extreme_points: int = 35
    rsi_extreme_confidence: int = 25
    rsi_points: int = 25
    rsi_confidence: int = 18
    rsi_mild_points: int = 12

    # MACD
    macd_strong_pct: float = 0.5  # |histogram| vs percent of price
    macd_strong_points: int = 35
    macd_strong_confidence: int = 20
    macd_points: int = 20
    macd_confidence: int = 12

    # EMA stack
    ema_points: int = 20
    ema_confidence: int = 12
    ema_proximity_pct: float = 2.0
    ema_proximity_boost: float = 1.5

    # ADX
    adx_strong: float = 30.0
    adx_moderate: float = 20.0
    adx_strong_points: int = 25
    adx_strong_confidence: int = 18
    adx_moderate_points: int = 12
    adx_moderate_confidence: int = 10

    # Bollinger %B
    bb_extreme_low: float = 5.0
    bb_low: float = 20.0
    bb_high: float = 80.0
    bb_extreme_high: float = 95.0
    bb_extreme_points: int = 20
    bb_extreme_confidence: int = 15
    bb_points: int = 10

    # Stochastic
    stoch_low: float = 20.0
    stoch_high: float = 80.0
    stoch_double_points: int = 15
    stoch_double_confidence: int = 10
    stoch_single_points: int = 8

    # Market structure
    structure_score_factor: float = 0.3
    structure_confidence_factor: float = 0.15
    volume_strong_points: int = 15
    volume_strong_confidence: int = 12
    volume_weak_penalty: int = 8
    regime_trending_bonus: int = 10
    regime_volatile_penalty: int = 15

    # Volatility dampener (ATR / price, percent)
    volatility_high_pct: float = 3.0
    volatility_high_penalty: int = 10
    volatility_low_pct: float = 1.0
    volatility_low_bonus: int = 8

    # Decision
    direction_threshold: float = 20.0
    confidence_base: float = 50.0
    confidence_floor: float = 30.0
    confidence_ceiling: float = 95.0
    success_factor: float = 0.85
    success_long_bonus: float = 5.0
    success_floor: float = 25.0
    success_ceiling: float = 95.0

    def signature(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class RiskConfig:
    reward_ratio: float = 2.0
    stop_band_pct: float = 5.0  # support/resistance must sit within this of entry to move a stop
    target_band_pct: float = 10.0
    level_offset_pct: float = 0.2  # keep stops/targets off the exact level
    neutral_stop_pct: float = 2.0
    neutral_target_pct: float = 4.0


@dataclass
class HarmonizerConfig:
    confidence_gate: float = 70.0
    reach: int = 3  # how many positions below a timeframe it influences
    threshold_scale: float = 3.0
    min_blend_weight: float = 0.05
    blend_weight: float = 0.25
    dominance_min: float = 0.6
    vote_weights: List[int] = field(default_factory=lambda: [3, 3, 3, 2, 2, 2])  # rest weigh 1


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"  # HTML | MarkdownV2
    min_confidence: float = 60.0
    publish_neutral: bool = False
    include_indicators: bool = True
    include_breakdown: bool = False
    footer: str = ""
    dedupe: bool = True


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    harmonizer: HarmonizerConfig = field(default_factory=HarmonizerConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)


def _apply_env(cfg: Config) -> Config:
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")

    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = _csv_env("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = chat_env

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}

    if cfg.provider.symbols is None:
        cfg.provider.symbols = []
    if cfg.provider.timeframes is None:
        cfg.provider.timeframes = []
    return cfg


def default_config() -> Config:
    return _apply_env(Config())


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        engine=EngineConfig(**raw.get("engine", {})),
        indicators=IndicatorConfig(**raw.get("indicators", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        risk=RiskConfig(**raw.get("risk", {})),
        harmonizer=HarmonizerConfig(**raw.get("harmonizer", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        webhook=WebhookConfig(**raw.get("webhook", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
    )
    return _apply_env(cfg)
