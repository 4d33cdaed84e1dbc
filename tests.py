#!/usr/bin/env python3
"""
SLOTENGINE — Unit Test Suite (layout & evaluator)

Run: python tests.py
     python tests.py -v                  # verbose
     python tests.py TestPaylineEvaluator

Test categories:
  TestSlotLayout        — defaults, override merging, fail-fast validation
  TestEngineConfig      — SLOT_* environment parsing
  TestSequenceRules     — wild handling, run termination, thresholds
  TestPaylineEvaluator  — full-grid scoring, lines, dominant symbol
  TestUniformSources    — Mulberry32 determinism, pick/shuffle helpers
"""

import os
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import DEFAULT_MASTER_SEED, EngineConfig
from config.slot_layout import (
    WILD, ConfigurationError, SymbolTier, build_layout, default_layout, load_layout,
)
from sim_engine.slots.evaluator import PaylineEvaluator, evaluate_spin
from sim_engine.slots.prng import (
    Mulberry32, derive_seed, pick, pick_index, shuffle_in_place,
)

QUIET_POOL = ["1", "3", "4", "5"]


def quiet_grid() -> list:
    """6x5 grid where no two cells a payline or column step apart match."""
    return [[QUIET_POOL[(row + 2 * reel) % 4] for reel in range(5)] for row in range(6)]


# ============================================================
# Layout
# ============================================================

class TestSlotLayout(unittest.TestCase):

    def test_default_layout_shape(self):
        layout = default_layout()
        self.assertEqual(layout.reels.count, 5)
        self.assertEqual(layout.reels.visible_rows, 6)
        self.assertEqual(len(layout.paylines), 20)
        self.assertEqual(layout.symbol_keys, ["1", "2", "3", "4", "5", WILD])
        self.assertNotIn(WILD, layout.base_symbols)

    def test_default_tiers(self):
        layout = default_layout()
        self.assertEqual(layout.symbols["1"].payout_tier, SymbolTier.LOW)
        self.assertEqual(layout.symbols["3"].payout_tier, SymbolTier.MEDIUM)
        self.assertEqual(layout.symbols[WILD].payout_tier, SymbolTier.JACKPOT)
        self.assertAlmostEqual(layout.rng.tier_scale(SymbolTier.HIGH), 1.3)

    def test_override_merges_nested(self):
        layout = load_layout({"rng": {"target_rtp": 0.95}}, use_env=False)
        self.assertAlmostEqual(layout.rng.target_rtp, 0.95)
        # untouched siblings keep their defaults
        self.assertAlmostEqual(layout.rng.floor_rtp, 0.9)
        self.assertEqual(layout.rng.trend.window, 40)

    def test_rtp_band_out_of_order(self):
        with self.assertRaises(ConfigurationError):
            load_layout({"rng": {"target_rtp": 0.99}}, use_env=False)

    def test_payline_wrong_length(self):
        with self.assertRaises(ConfigurationError):
            load_layout({"paylines": [[0, 0, 0, 0]]}, use_env=False)

    def test_payline_row_out_of_range(self):
        with self.assertRaises(ConfigurationError):
            load_layout({"paylines": [[0, 1, 2, 3, 6]]}, use_env=False)

    def test_decreasing_payouts_rejected(self):
        with self.assertRaises(ConfigurationError):
            load_layout({"payouts": {"1": {4: 0.1}}}, use_env=False)

    def test_payout_threshold_below_minimum_run(self):
        with self.assertRaises(ConfigurationError):
            load_layout({"payouts": {"1": {2: 0.1}}}, use_env=False)

    def test_type_errors_become_configuration_errors(self):
        with self.assertRaises(ConfigurationError):
            load_layout({"symbols": {"1": {"base_weight": 0}}}, use_env=False)

    def test_missing_wild_rejected(self):
        layout = default_layout().model_dump()
        del layout["symbols"][WILD]
        del layout["payouts"][WILD]
        with self.assertRaises(ConfigurationError):
            build_layout(layout)

    def test_env_overrides(self):
        with patch.dict(os.environ, {"SLOT_TARGET_RTP": "0.95", "SLOT_TREND_WINDOW": "25"}):
            layout = load_layout()
            self.assertAlmostEqual(layout.rng.target_rtp, 0.95)
            self.assertEqual(layout.rng.trend.window, 25)
            self.assertAlmostEqual(load_layout(use_env=False).rng.target_rtp, 0.94)


class TestEngineConfig(unittest.TestCase):

    def test_master_seed_default(self):
        with patch.dict(os.environ, {"SLOT_MASTER_SEED": ""}):
            self.assertEqual(EngineConfig.master_seed(), DEFAULT_MASTER_SEED)
            self.assertEqual(DEFAULT_MASTER_SEED, 0xC0DEFACE)

    def test_master_seed_hex_and_decimal(self):
        with patch.dict(os.environ, {"SLOT_MASTER_SEED": "0x10"}):
            self.assertEqual(EngineConfig.master_seed(), 16)
        with patch.dict(os.environ, {"SLOT_MASTER_SEED": "42"}):
            self.assertEqual(EngineConfig.master_seed(), 42)

    def test_master_seed_masked_to_32_bits(self):
        with patch.dict(os.environ, {"SLOT_MASTER_SEED": str(2 ** 32 + 5)}):
            self.assertEqual(EngineConfig.master_seed(), 5)

    def test_max_spin_bet(self):
        with patch.dict(os.environ, {"SLOT_MAX_SPIN_BET": ""}):
            self.assertEqual(EngineConfig.max_spin_bet(), 10_000.0)
        with patch.dict(os.environ, {"SLOT_MAX_SPIN_BET": "250"}):
            self.assertEqual(EngineConfig.max_spin_bet(), 250.0)

    def test_rng_overrides_empty_without_env(self):
        keys = ["SLOT_TARGET_RTP", "SLOT_FLOOR_RTP", "SLOT_CEILING_RTP", "SLOT_TREND_WINDOW"]
        with patch.dict(os.environ, {k: "" for k in keys}):
            self.assertEqual(EngineConfig.rng_overrides(), {})

    def test_malformed_values_raise_configuration_error(self):
        cases = [
            ("SLOT_MASTER_SEED", "seed-me", EngineConfig.master_seed),
            ("SLOT_TREND_WINDOW", "forty", EngineConfig.rng_overrides),
            ("SLOT_TARGET_RTP", "ninety", EngineConfig.rng_overrides),
            ("SLOT_MAX_SPIN_BET", "plenty", EngineConfig.max_spin_bet),
        ]
        for key, value, read in cases:
            with self.subTest(key=key):
                with patch.dict(os.environ, {key: value}):
                    with self.assertRaises(ConfigurationError) as ctx:
                        read()
                self.assertIn(key, str(ctx.exception))

    def test_malformed_env_fails_layout_load(self):
        with patch.dict(os.environ, {"SLOT_TREND_WINDOW": "forty"}):
            with self.assertRaises(ConfigurationError):
                load_layout()


# ============================================================
# Evaluator
# ============================================================

class TestSequenceRules(unittest.TestCase):

    def setUp(self):
        self.evaluator = PaylineEvaluator(default_layout())

    def test_leading_wilds_take_next_symbol(self):
        win = self.evaluator.evaluate_sequence([WILD, WILD, "2", "2", "2"])
        self.assertEqual((win.symbol, win.count), ("2", 5))
        self.assertAlmostEqual(win.multiplier, 3.6)

    def test_all_wild_run(self):
        win = self.evaluator.evaluate_sequence([WILD, WILD, WILD])
        self.assertEqual((win.symbol, win.count), (WILD, 3))
        self.assertAlmostEqual(win.multiplier, 6)

    def test_wild_run_extended_by_first_symbol(self):
        win = self.evaluator.evaluate_sequence([WILD, WILD, WILD, "1", "1"])
        self.assertEqual((win.symbol, win.count), ("1", 5))
        self.assertAlmostEqual(win.multiplier, 2.4)

    def test_wild_inside_run(self):
        win = self.evaluator.evaluate_sequence(["4", WILD, "4", "1", "4"])
        self.assertEqual((win.symbol, win.count), ("4", 3))
        self.assertAlmostEqual(win.multiplier, 2.8)

    def test_short_run_pays_nothing(self):
        self.assertIsNone(self.evaluator.evaluate_sequence(["1", "1", "2", "1", "1"]))
        self.assertIsNone(self.evaluator.evaluate_sequence([WILD, WILD]))
        self.assertIsNone(self.evaluator.evaluate_sequence([]))

    def test_missing_or_unknown_cell_stops_run(self):
        self.assertIsNone(self.evaluator.evaluate_sequence(["1", None, "1", "1"]))
        self.assertIsNone(self.evaluator.evaluate_sequence(["1", "1", "X", "1"]))
        win = self.evaluator.evaluate_sequence(["3", "3", "3", None, "3"])
        self.assertEqual(win.count, 3)

    def test_multipliers_monotone_in_count(self):
        layout = default_layout()
        for symbol in layout.symbol_keys:
            values = [self.evaluator.resolve_multiplier(symbol, n) for n in range(0, 9)]
            self.assertEqual(values, sorted(values), f"{symbol}: {values}")
            self.assertEqual(values[2], 0.0)
            self.assertGreater(values[3], 0.0)

    def test_highest_threshold_applies(self):
        self.assertAlmostEqual(self.evaluator.resolve_multiplier("5", 6), 40)
        self.assertAlmostEqual(self.evaluator.resolve_multiplier("5", 7), 40)
        self.assertEqual(self.evaluator.resolve_multiplier("nope", 5), 0.0)


class TestPaylineEvaluator(unittest.TestCase):

    def setUp(self):
        self.evaluator = PaylineEvaluator(default_layout())

    def test_lines(self):
        self.assertEqual(len(self.evaluator.paylines), 20)
        self.assertEqual(len(self.evaluator.columns), 5)
        self.assertEqual(self.evaluator.lines[0].line_id, "payline-1")
        self.assertEqual(self.evaluator.lines[-1].line_id, "column-5")
        self.assertEqual(self.evaluator.line("payline-7").cells,
                         ((0, 0), (1, 1), (2, 2), (3, 3), (4, 4)))
        self.assertEqual(len(self.evaluator.line("column-2").cells), 6)
        self.assertIsNone(self.evaluator.line("payline-99"))

    def test_quiet_grid_pays_nothing(self):
        result = self.evaluator.evaluate(quiet_grid(), 1)
        self.assertEqual(result.total_win, 0)
        self.assertEqual(result.winning_lines, [])
        self.assertIsNone(result.dominant_symbol)

    def test_top_row_of_twos(self):
        grid = quiet_grid()
        grid[0] = ["2"] * 5
        result = self.evaluator.evaluate(grid, 1)
        self.assertAlmostEqual(result.total_win, 3.6)
        self.assertEqual(len(result.winning_lines), 1)
        win = result.winning_lines[0]
        self.assertEqual((win.line_id, win.symbol, win.count), ("payline-1", "2", 5))
        self.assertEqual(result.dominant_symbol, "2")

    def test_bet_scales_payout(self):
        grid = quiet_grid()
        grid[0] = ["2"] * 5
        self.assertAlmostEqual(self.evaluator.evaluate(grid, 2.5).total_win, 9.0)
        self.assertEqual(self.evaluator.evaluate(grid, 0).total_win, 0)

    def test_column_win(self):
        grid = quiet_grid()
        for row in grid:
            row[0] = "3"
        result = self.evaluator.evaluate(grid, 1)
        columns = [w for w in result.winning_lines if w.line_id == "column-1"]
        self.assertEqual(len(columns), 1)
        self.assertEqual((columns[0].symbol, columns[0].count), ("3", 6))
        self.assertAlmostEqual(columns[0].multiplier, 11)

    def test_dominant_symbol_is_highest_payout(self):
        grid = quiet_grid()
        grid[0] = ["2"] * 5
        grid[5] = ["5", "5", "5", "1", "3"]
        result = self.evaluator.evaluate(grid, 1)
        self.assertEqual(result.dominant_symbol, "5")
        self.assertAlmostEqual(result.total_win, 3.6 + 4.2)

    def test_deterministic(self):
        grid = quiet_grid()
        grid[2] = [WILD, "4", "4", "4", "1"]
        first = self.evaluator.evaluate(grid, 1).to_dict()
        second = self.evaluator.evaluate([list(r) for r in grid], 1).to_dict()
        self.assertEqual(first, second)

    def test_malformed_grids_never_raise(self):
        self.assertEqual(self.evaluator.evaluate([], 1).total_win, 0)
        self.assertEqual(self.evaluator.evaluate([["1"]], 1).total_win, 0)
        self.assertEqual(self.evaluator.evaluate(None, 1).total_win, 0)
        # missing cells end the run: only the 3-cell top row pays
        ragged = [["4", "4", "4"], ["1"]]
        result = self.evaluator.evaluate(ragged, 1)
        self.assertAlmostEqual(result.total_win, 2.8)
        self.assertEqual([w.line_id for w in result.winning_lines], ["payline-1"])

    def test_module_helper_uses_default_layout(self):
        grid = quiet_grid()
        grid[0] = ["2"] * 5
        self.assertAlmostEqual(evaluate_spin(grid, 1).total_win, 3.6)

    def test_to_dict(self):
        grid = quiet_grid()
        grid[0] = ["2"] * 5
        data = self.evaluator.evaluate(grid, 1).to_dict()
        self.assertEqual(data["winning_lines"][0]["id"], "payline-1")
        self.assertEqual(data["dominant_symbol"], "2")


# ============================================================
# Uniform sources
# ============================================================

class TestUniformSources(unittest.TestCase):

    def test_mulberry32_deterministic(self):
        a, b = Mulberry32(0xC0DEFACE), Mulberry32(0xC0DEFACE)
        self.assertEqual([a.random() for _ in range(50)], [b.random() for _ in range(50)])
        self.assertNotEqual(Mulberry32(1).random(), Mulberry32(2).random())

    def test_mulberry32_range(self):
        source = Mulberry32(7)
        for _ in range(5000):
            value = source.random()
            self.assertGreaterEqual(value, 0.0)
            self.assertLess(value, 1.0)

    def test_pick_index_clamps(self):
        class One:
            def random(self):
                return 1.0
        self.assertEqual(pick_index(One(), 10), 9)
        with self.assertRaises(ValueError):
            pick_index(One(), 0)

    def test_pick_and_derive_seed(self):
        source = Mulberry32(3)
        self.assertIn(pick(["a", "b", "c"], source), ["a", "b", "c"])
        seed = derive_seed(source)
        self.assertGreaterEqual(seed, 0)
        self.assertLessEqual(seed, 0xFFFFFFFF)

    def test_shuffle_is_permutation(self):
        items = list(range(100))
        shuffle_in_place(items, Mulberry32(11))
        self.assertEqual(sorted(items), list(range(100)))
        self.assertNotEqual(items, list(range(100)))

        again = list(range(100))
        shuffle_in_place(again, Mulberry32(11))
        self.assertEqual(items, again)


# ============================================================
# Main
# ============================================================

if __name__ == "__main__":
    # Configure logging to suppress noise during tests
    import logging
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
