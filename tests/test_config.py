import pytest

from mtf_signal_engine.config import Config, ScoringConfig, default_config, load_config
from mtf_signal_engine.runner import scoring_signature


def _write(tmp_path, text: str):
    p = tmp_path / "config.yaml"
    p.write_text(text, encoding="utf-8")
    return str(p)


def test_defaults_without_file(monkeypatch):
    for k in ("TELEGRAM_TOKEN", "TELEGRAM_CHAT_IDS", "WEBHOOK_URL", "WEBHOOK_SECRET", "LOG_LEVEL"):
        monkeypatch.delenv(k, raising=False)
    cfg = default_config()
    assert cfg.engine.max_workers == 10
    assert cfg.engine.cache_max_entries == 4096
    assert cfg.scoring.direction_threshold == 20.0
    assert cfg.harmonizer.vote_weights == [3, 3, 3, 2, 2, 2]
    assert cfg.provider.symbols == []
    assert cfg.telegram.chat_ids == []


def test_load_sections(tmp_path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_CHAT_IDS", raising=False)
    path = _write(
        tmp_path,
        """
provider:
  symbols: [BTCUSDT]
  timeframes: ["1h", "4h"]
scoring:
  rsi_extreme_points: 40
risk:
  reward_ratio: 3.0
harmonizer:
  reach: 2
telegram:
  chat_ids: ["1"]
""",
    )
    cfg = load_config(path)
    assert cfg.provider.symbols == ["BTCUSDT"]
    assert cfg.provider.timeframes == ["1h", "4h"]
    assert cfg.scoring.rsi_extreme_points == 40
    assert cfg.scoring.rsi_points == 25
    assert cfg.risk.reward_ratio == 3.0
    assert cfg.harmonizer.reach == 2
    assert cfg.telegram.chat_ids == ["1"]


def test_empty_file(tmp_path):
    cfg = load_config(_write(tmp_path, ""))
    assert isinstance(cfg, Config)


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("TELEGRAM_TOKEN", "tok")
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", "a, b,,c")
    monkeypatch.setenv("WEBHOOK_URL", "https://example.invalid/hook")
    monkeypatch.setenv("WEBHOOK_SECRET", "s3")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    cfg = load_config(_write(tmp_path, "telegram:\n  token: from_file\n"))
    assert cfg.telegram.token == "tok"
    assert cfg.telegram.chat_ids == ["a", "b", "c"]
    assert cfg.webhook.url == "https://example.invalid/hook"
    assert cfg.webhook.secret == "s3"
    assert cfg.app.log_level == "DEBUG"


def test_unknown_key_rejected(tmp_path):
    with pytest.raises(TypeError):
        load_config(_write(tmp_path, "scoring:\n  no_such_weight: 1\n"))


def test_scoring_signature():
    a = Config()
    b = Config(scoring=ScoringConfig(rsi_extreme_points=36))
    assert scoring_signature(a) == scoring_signature(Config())
    assert scoring_signature(a) != scoring_signature(b)
    assert a.scoring.signature()["macd_strong_pct"] == 0.5
