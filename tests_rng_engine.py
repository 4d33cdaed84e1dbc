#!/usr/bin/env python3
"""
Tests for the weighted RNG engine (cosmetic symbol generation)

Validates:
1.  Weights are >= 1 with a positive sum in every state
2.  Fresh engine: RTP at target, drought boost on non-low tiers only
3.  Running RTP above the ceiling pulls every weight down
4.  Running RTP below the floor pushes every weight up
5.  Loss streak past the trigger shifts weight from low to high tiers
6.  Streak resets on a win; trailing window evicts the oldest payout
7.  next_symbol() walks the cumulative weights with the injected source
8.  Negative bets are rejected; reset() clears the running state
"""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.slot_layout import default_layout, load_layout
from sim_engine.slots.prng import Mulberry32
from sim_engine.slots.rng_engine import WeightedRngEngine


class FixedSource:
    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def _engine(source=None) -> WeightedRngEngine:
    return WeightedRngEngine(default_layout(), source=source or Mulberry32(1))


def _weights(engine: WeightedRngEngine) -> dict:
    return {w.symbol: w.weight for w in engine.compute_weights()}


def _spin(engine: WeightedRngEngine, bet: float, payout: float):
    engine.begin_spin(bet)
    engine.complete_spin(payout)


# ============================================================
# Tests
# ============================================================

def test_weights_positive_in_any_state():
    engine = _engine()
    states = [(0, 0), (100, 0), (100, 500), (1, 1), (0, 0), (0, 0), (0, 0), (0, 0), (0, 0)]
    for bet, payout in states:
        _spin(engine, bet, payout)
        weights = engine.compute_weights()
        assert all(w.weight >= 1.0 for w in weights)
        assert sum(w.weight for w in weights) > 0
        cfg = engine.config
        assert all(cfg.min_weight_multiplier <= w.adjustment <= cfg.max_weight_multiplier for w in weights)


def test_fresh_engine_weights():
    engine = _engine()
    assert engine.current_rtp == pytest.approx(0.94)
    assert engine.recent_win_rate == 0.0

    weights = _weights(engine)
    # low tiers: no feedback, no drought boost
    assert weights["1"] == pytest.approx(420.0)
    assert weights["2"] == pytest.approx(294.0)
    # drought factor 1 + 0.28 * 0.45 = 1.126, scaled by tier
    assert weights["3"] == pytest.approx(180 * (1 + 0.126 * 0.85) * 1.1)
    assert weights["5"] == pytest.approx(45 * (1 + 0.126 * 1.3) * 1.35)


def test_baseline_weights():
    baseline = _engine().baseline_weights()
    assert baseline["1"] == pytest.approx(420.0)
    assert baseline["wild"] == pytest.approx(18.0)


def test_weights_trend_down_above_ceiling():
    engine = _engine()
    _spin(engine, 100, 200)          # RTP 2.0, window win rate 1.0
    assert engine.current_rtp == pytest.approx(2.0)

    weights = _weights(engine)
    baseline = engine.baseline_weights()
    for symbol, weight in weights.items():
        assert weight < baseline[symbol], symbol

    # low: (1 - 0.65 * 0.45) * (1 + 0.15)
    assert weights["1"] == pytest.approx(420 * 0.7075 * 1.15)
    # high/jackpot clamp at the minimum multiplier
    assert weights["5"] == pytest.approx(45 * 0.25 * 1.35)
    assert weights["wild"] == pytest.approx(12 * 0.25 * 1.5)


def test_weights_trend_up_below_floor():
    engine = _engine()
    _spin(engine, 100, 0)            # RTP 0.0
    weights = _weights(engine)
    baseline = engine.baseline_weights()
    for symbol, weight in weights.items():
        assert weight > baseline[symbol], symbol

    assert weights["1"] == pytest.approx(420 * (1 + 0.65 * 0.45))
    high = (1 + 0.65 * 1.3) * (1 + 0.126 * 1.3)
    assert weights["5"] == pytest.approx(45 * high * 1.35)


def test_high_tier_share_rises_as_rtp_falls():
    rich, poor = _engine(), _engine()
    _spin(rich, 100, 200)
    _spin(poor, 100, 0)

    def share(engine, symbol):
        weights = _weights(engine)
        return weights[symbol] / sum(weights.values())

    assert share(poor, "5") > share(rich, "5")
    assert share(poor, "wild") > share(rich, "wild")
    assert share(poor, "1") < share(rich, "1")


def test_loss_streak_boost():
    short, long_ = _engine(), _engine()
    _spin(short, 100, 0)
    _spin(long_, 100, 0)
    for _ in range(5):
        _spin(long_, 0, 0)
    assert short.loss_streak == 1
    assert long_.loss_streak == 6

    a, b = _weights(short), _weights(long_)
    # streak boost min((6 - 5 + 1) * 0.18, 1.2) = 0.36
    assert b["1"] == pytest.approx(420 * (1 + 0.65 * 0.45 - 0.36 * 0.25))
    assert b["4"] > a["4"]
    assert b["1"] < a["1"]


def test_streak_resets_on_win():
    engine = _engine()
    for _ in range(3):
        _spin(engine, 1, 0)
    assert engine.loss_streak == 3
    _spin(engine, 1, 0.6)
    assert engine.loss_streak == 0


def test_trailing_window_is_bounded():
    engine = WeightedRngEngine(load_layout({"rng": {"trend": {"window": 5}}}, use_env=False))
    for payout in [1, 0, 0, 0, 0, 0, 2]:
        _spin(engine, 1, payout)
    state = engine.state
    assert state.recent_payouts == [0, 0, 0, 0, 2]
    assert engine.recent_win_rate == pytest.approx(0.2)
    assert state.spins == 7
    assert state.total_wagered == pytest.approx(7)
    assert state.total_paid == pytest.approx(3)


def test_next_symbol_cumulative_walk():
    assert _engine(FixedSource(0.0)).next_symbol() == "1"
    assert _engine(FixedSource(0.999999)).next_symbol() == "wild"

    weights = _weights(_engine())
    total = sum(weights.values())
    # just past the first two symbols' cumulative weight
    pointer = (weights["1"] + weights["2"] + 1) / total
    assert _engine(FixedSource(pointer)).next_symbol() == "3"


def test_next_symbol_seeded_is_reproducible():
    a, b = _engine(Mulberry32(99)), _engine(Mulberry32(99))
    assert a.draw_strip(30) == b.draw_strip(30)
    assert len(a.draw_strip(8)) == 8
    assert a.draw_strip(-1) == []
    assert set(a.draw_strip(200)) <= set(default_layout().symbol_keys)


def test_negative_bet_rejected():
    engine = _engine()
    with pytest.raises(ValueError):
        engine.begin_spin(-1)
    assert engine.state.total_wagered == 0


def test_reset():
    engine = _engine()
    for _ in range(6):
        _spin(engine, 2, 0)
    engine.reset()
    state = engine.state
    assert state.to_dict() == {
        "total_wagered": 0.0,
        "total_paid": 0.0,
        "loss_streak": 0,
        "recent_payouts": [],
        "spins": 0,
    }
    assert engine.current_rtp == pytest.approx(engine.config.target_rtp)
