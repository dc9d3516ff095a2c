import math
import threading

import pytest

from mtf_signal_engine.accuracy import AccuracyFeedbackStore
from mtf_signal_engine.errors import InvalidInputError
from mtf_signal_engine.models import LONG, NEUTRAL, SHORT


def test_seven_of_ten():
    store = AccuracyFeedbackStore()
    for ok in [True] * 7 + [False] * 3:
        store.record_outcome("BTC", "1h", ok)
    rec = store.get_record("BTC", "1h")
    assert rec.correct_count == 7
    assert rec.total_count == 10
    assert math.isclose(rec.win_rate, 70.0)
    assert math.isclose(rec.adaptive_weight, 1.0)
    assert math.isclose(store.get_weight("BTC", "1h"), 1.0)


def test_weight_defaults_and_clamps():
    store = AccuracyFeedbackStore()
    assert store.get_weight("ETH", "4h") == 1.0
    assert store.get_record("ETH", "4h") is None

    for _ in range(5):
        store.record_outcome("ETH", "4h", False)
    assert store.get_weight("ETH", "4h") == 0.5

    for _ in range(10):
        store.record_outcome("SOL", "1d", True)
    assert store.get_weight("SOL", "1d") <= 1.5
    assert math.isclose(store.get_weight("SOL", "1d"), 100.0 / 70.0)
    assert len(store) == 2
    assert {(r.symbol, r.timeframe) for r in store.records()} == {("ETH", "4h"), ("SOL", "1d")}


def test_records_are_snapshots():
    store = AccuracyFeedbackStore()
    store.record_outcome("BTC", "1h", True)
    rec = store.get_record("BTC", "1h")
    rec.total_count = 999
    assert store.get_record("BTC", "1h").total_count == 1


def test_concurrent_outcomes():
    store = AccuracyFeedbackStore()

    def worker():
        for _ in range(250):
            store.record_outcome("BTC", "1m", True)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert store.get_record("BTC", "1m").total_count == 1000


def test_long_prediction_closes_on_target():
    store = AccuracyFeedbackStore()
    pred = store.record_prediction("BTC", "1h", LONG, 100.0, 97.0, 106.0, 80.0, opened_at=0)
    assert pred.id.startswith("BTC_1h_")
    assert store.check_predictions("BTC", 103.0, now=60) == []
    # other symbols are untouched
    assert store.check_predictions("ETH", 200.0, now=60) == []

    closed = store.check_predictions("BTC", 106.5, now=120)
    assert [p.id for p in closed] == [pred.id]
    assert closed[0].was_correct is True
    assert closed[0].exit_price == 106.5
    assert math.isclose(closed[0].profit_loss_pct, 6.5)
    assert store.get_record("BTC", "1h").correct_count == 1
    # settled once only
    assert store.check_predictions("BTC", 110.0, now=180) == []
    assert store.predictions("BTC", open_only=True) == []


def test_short_prediction_stopped_out_lowers_weight():
    store = AccuracyFeedbackStore()
    store.record_prediction("BTC", "4h", SHORT, 100.0, 103.0, 94.0, 70.0, opened_at=0)
    closed = store.check_predictions("BTC", 103.5, now=10)
    assert closed[0].was_correct is False
    assert math.isclose(closed[0].profit_loss_pct, -3.5)
    assert store.get_weight("BTC", "4h") == 0.5


def test_prediction_expires_after_hold_limit():
    store = AccuracyFeedbackStore()
    store.record_prediction("BTC", "15m", LONG, 100.0, 95.0, 110.0, 60.0, opened_at=1000)
    store.record_prediction("BTC", "15m", SHORT, 100.0, 105.0, 90.0, 60.0, opened_at=1000)
    # 15m holds for 75 minutes
    assert store.check_predictions("BTC", 101.0, now=1000 + 75 * 60) == []
    closed = store.check_predictions("BTC", 101.0, now=1000 + 75 * 60 + 1)
    assert {p.direction: p.was_correct for p in closed} == {LONG: True, SHORT: False}
    rec = store.get_record("BTC", "15m")
    assert rec.total_count == 2
    assert math.isclose(rec.win_rate, 50.0)


def test_neutral_prediction_rejected_and_prune():
    store = AccuracyFeedbackStore()
    with pytest.raises(InvalidInputError):
        store.record_prediction("BTC", "1h", NEUTRAL, 100.0, 98.0, 104.0, 50.0)

    store.record_prediction("BTC", "1h", LONG, 100.0, 98.0, 104.0, 80.0, opened_at=0)
    store.record_prediction("BTC", "1h", LONG, 100.0, 98.0, 104.0, 80.0, opened_at=0)
    store.check_predictions("BTC", 105.0, now=10)
    store.record_prediction("BTC", "1h", LONG, 100.0, 98.0, 104.0, 80.0, opened_at=0)
    # only resolved entries go
    assert store.prune_predictions(max_age_s=3600, now=7200) == 2
    assert len(store.predictions()) == 1
