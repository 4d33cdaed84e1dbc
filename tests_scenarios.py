#!/usr/bin/env python3
"""
SLOTENGINE — Scenario Catalog Tests

Run: python tests_scenarios.py -v

Test categories:
  TestDeckConstruction   — counts, ids, seeded shuffle
  TestCatalogValidation  — fail-fast ConfigurationError cases
  TestGridConstruction   — exact evaluation of settled grids, loss grids pay 0
  TestCatalogLifecycle   — next_scenario(), stats, degradation records, close()
"""

import copy
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.slot_layout import DEFAULT_LAYOUT_DATA, WILD, build_layout, default_layout
from sim_engine.slots.errors import CatalogClosedError, ConfigurationError
from sim_engine.slots.evaluator import PaylineEvaluator
from sim_engine.slots.prng import Mulberry32
from sim_engine.slots.scenarios import (
    CATEGORY_COUNTS, CATEGORY_PATTERNS, DISPLAY_ID_RANGE, MULTIPLIER_EPSILON, TOTAL_SCENARIOS,
    GridBuilder, PatternDefinition, ScenarioCatalog, ScenarioCategory, ScenarioDefinition,
    validate_catalog_config, viable_lines,
)

SEED = 0xC0DEFACE

SMALL_COUNTS = {
    ScenarioCategory.LOSS: 50,
    ScenarioCategory.PARTIAL: 30,
    ScenarioCategory.WIN_LOW: 12,
    ScenarioCategory.WIN_MID: 6,
    ScenarioCategory.WIN_HIGH: 2,
}


def small_catalog(seed: int = SEED, **kwargs) -> ScenarioCatalog:
    return ScenarioCatalog.build(
        seed, layout=default_layout(), category_counts=SMALL_COUNTS, total=100, **kwargs
    )


# ============================================================
# Deck
# ============================================================

class TestDeckConstruction(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.catalog = ScenarioCatalog.build(SEED, layout=default_layout(), source=Mulberry32(1))

    def test_size_and_counts(self):
        self.assertEqual(TOTAL_SCENARIOS, 100_000)
        self.assertEqual(len(self.catalog), TOTAL_SCENARIOS)
        self.assertEqual(self.catalog.category_counts(), CATEGORY_COUNTS)
        self.assertEqual(sum(CATEGORY_COUNTS.values()), TOTAL_SCENARIOS)

    def test_sequential_ids(self):
        ids = [definition.id for definition in self.catalog.deck]
        self.assertEqual(ids, list(range(TOTAL_SCENARIOS)))

    def test_seeds_are_32_bit(self):
        for definition in self.catalog.deck[:1000]:
            self.assertGreaterEqual(definition.seed, 0)
            self.assertLessEqual(definition.seed, 0xFFFFFFFF)

    def test_deck_is_shuffled(self):
        head = [d.category for d in self.catalog.deck[:200]]
        self.assertGreater(len(set(head)), 2)

    def test_same_seed_same_deck(self):
        again = small_catalog()
        other = small_catalog()
        self.assertEqual(again.deck, other.deck)
        self.assertNotEqual(small_catalog(seed=1).deck, again.deck)

    def test_theoretical_rtp(self):
        # 0.3 * 0.75 + 0.12 * 1.74 + 0.06 * 9.18 + 0.02 * 42.4
        self.assertAlmostEqual(self.catalog.theoretical_rtp(), 1.8326, places=6)
        self.assertEqual(self.catalog.expected_multiplier(ScenarioCategory.LOSS), 0.0)


# ============================================================
# Validation
# ============================================================

class TestCatalogValidation(unittest.TestCase):

    def test_counts_must_match_total(self):
        counts = dict(SMALL_COUNTS)
        counts[ScenarioCategory.LOSS] = 49
        with self.assertRaises(ConfigurationError):
            ScenarioCatalog.build(SEED, category_counts=counts, total=100)

    def test_negative_count(self):
        counts = dict(SMALL_COUNTS)
        counts[ScenarioCategory.LOSS] = -1
        counts[ScenarioCategory.PARTIAL] = 81
        with self.assertRaises(ConfigurationError):
            ScenarioCatalog.build(SEED, category_counts=counts, total=100)

    def test_unknown_category_key(self):
        with self.assertRaises(ConfigurationError):
            ScenarioCatalog.build(SEED, category_counts={"loss": 10}, total=10)

    def test_short_wild_pattern_rejected(self):
        patterns = dict(CATEGORY_PATTERNS)
        patterns[ScenarioCategory.PARTIAL] = (PatternDefinition("payline", WILD, 3),)
        with self.assertRaises(ConfigurationError):
            small_catalog(patterns=patterns)

    def test_pattern_longer_than_line_rejected(self):
        patterns = dict(CATEGORY_PATTERNS)
        patterns[ScenarioCategory.WIN_LOW] = (PatternDefinition("payline", "1", 6),)
        with self.assertRaises(ConfigurationError):
            small_catalog(patterns=patterns)
        patterns[ScenarioCategory.WIN_LOW] = (PatternDefinition("column", "1", 7),)
        with self.assertRaises(ConfigurationError):
            small_catalog(patterns=patterns)

    def test_unknown_pattern_symbol_or_kind(self):
        patterns = dict(CATEGORY_PATTERNS)
        patterns[ScenarioCategory.WIN_LOW] = (PatternDefinition("payline", "9", 3),)
        with self.assertRaises(ConfigurationError):
            small_catalog(patterns=patterns)
        patterns[ScenarioCategory.WIN_LOW] = (PatternDefinition("diagonal", "1", 3),)
        with self.assertRaises(ConfigurationError):
            small_catalog(patterns=patterns)

    def test_pattern_without_clean_line_rejected(self):
        # Both paylines share their first two cells, so a full wild run on
        # either one always makes the other pay as well.
        data = copy.deepcopy(DEFAULT_LAYOUT_DATA)
        data["paylines"] = [[0, 0, 0, 0, 0], [0, 0, 1, 1, 1]]
        evaluator = PaylineEvaluator(build_layout(data))
        counts = {ScenarioCategory.LOSS: 9, ScenarioCategory.WIN_HIGH: 1}
        patterns = {ScenarioCategory.WIN_HIGH: (PatternDefinition("payline", WILD, 5),)}
        with self.assertRaises(ConfigurationError):
            validate_catalog_config(counts, 10, patterns, evaluator)

        patterns = {ScenarioCategory.WIN_HIGH: (PatternDefinition("payline", "5", 5),)}
        validate_catalog_config(counts, 10, patterns, evaluator)

    def test_missing_patterns_for_populated_category(self):
        patterns = dict(CATEGORY_PATTERNS)
        patterns[ScenarioCategory.WIN_MID] = ()
        with self.assertRaises(ConfigurationError):
            small_catalog(patterns=patterns)

    def test_empty_category_needs_no_patterns(self):
        counts = {ScenarioCategory.LOSS: 10}
        catalog = ScenarioCatalog.build(SEED, category_counts=counts, total=10,
                                        patterns={ScenarioCategory.LOSS: ()})
        self.assertEqual(catalog.category_counts()[ScenarioCategory.LOSS], 10)
        self.assertEqual(catalog.category_counts()[ScenarioCategory.WIN_HIGH], 0)
        self.assertEqual(catalog.theoretical_rtp(), 0.0)


# ============================================================
# Grid construction
# ============================================================

class TestGridConstruction(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.catalog = ScenarioCatalog.build(SEED, layout=default_layout(), source=Mulberry32(2))
        cls.evaluator = cls.catalog.evaluator
        cls.sample = [cls.catalog.materialize(d, display_id=0) for d in cls.catalog.deck[:300]]

    def test_loss_grids_pay_nothing(self):
        losses = [s for s in self.sample if s.category == ScenarioCategory.LOSS]
        self.assertGreater(len(losses), 0)
        for scenario in losses:
            self.assertEqual(scenario.base_multiplier, 0.0)
            self.assertEqual(self.evaluator.evaluate(scenario.grid, 1).total_win, 0)

    def test_win_grids_match_base_multiplier(self):
        wins = [s for s in self.sample if s.category != ScenarioCategory.LOSS]
        self.assertGreater(len(wins), 0)
        for scenario in wins:
            self.assertFalse(scenario.degraded)
            self.assertGreater(scenario.base_multiplier, 0)
            total = self.evaluator.evaluate(scenario.grid, 1).total_win
            self.assertLess(abs(total - scenario.base_multiplier), MULTIPLIER_EPSILON)

    def test_bet_scales_exactly(self):
        for scenario in self.sample[:50]:
            total = self.evaluator.evaluate(scenario.grid, 3).total_win
            self.assertLess(abs(total - 3 * scenario.base_multiplier), 3 * MULTIPLIER_EPSILON)

    def test_default_patterns_never_degrade(self):
        self.assertEqual([s for s in self.sample if s.degraded], [])

    def test_grid_shape_and_symbols(self):
        layout = self.evaluator.layout
        for scenario in self.sample[:50]:
            self.assertEqual(len(scenario.grid), layout.reels.visible_rows)
            for row in scenario.grid:
                self.assertEqual(len(row), layout.reels.count)
                self.assertTrue(set(row) <= set(layout.symbol_keys))

    def test_materialize_is_deterministic(self):
        definition = self.catalog.deck[7]
        first = self.catalog.materialize(definition, display_id=1)
        second = self.catalog.materialize(definition, display_id=1)
        self.assertEqual(first.grid, second.grid)
        self.assertEqual(first.base_multiplier, second.base_multiplier)

    def assertExact(self, construction, pattern):
        self.assertTrue(construction.exact, f"{pattern.label}: {construction.achieved_total}")
        expected = self.evaluator.resolve_multiplier(pattern.symbol, pattern.count)
        self.assertEqual(construction.multiplier, expected)
        result = self.evaluator.evaluate(construction.grid, 1)
        self.assertLess(abs(result.total_win - expected), MULTIPLIER_EPSILON, pattern.label)
        for win in result.winning_lines:
            self.assertEqual((win.symbol, win.count), (pattern.symbol, pattern.count))

    def test_each_pattern_is_constructible(self):
        for category, patterns in CATEGORY_PATTERNS.items():
            for pattern in patterns:
                for seed in range(8):
                    with self.subTest(pattern=pattern.label, seed=seed):
                        construction = GridBuilder(self.evaluator, Mulberry32(seed)).build(pattern)
                        self.assertExact(construction, pattern)

    def test_full_wild_payline_builds_exactly(self):
        pattern = PatternDefinition("payline", WILD, 5)
        for seed in range(60):
            with self.subTest(seed=seed):
                construction = GridBuilder(self.evaluator, Mulberry32(seed)).build(pattern)
                self.assertExact(construction, pattern)
                self.assertEqual(len(construction.grid[0]), 5)

    def test_wild_run_only_on_lines_without_forced_wins(self):
        paylines = viable_lines(self.evaluator, PatternDefinition("payline", WILD, 5))
        self.assertEqual([line.line_id for line in paylines], ["payline-13", "payline-14"])
        columns = viable_lines(self.evaluator, PatternDefinition("column", WILD, 6))
        self.assertEqual(len(columns), len(self.evaluator.columns))
        symbol_lines = viable_lines(self.evaluator, PatternDefinition("payline", "5", 5))
        self.assertEqual(len(symbol_lines), len(self.evaluator.paylines))

    def test_repair_pass_reaches_exact_pattern_grids(self):
        repaired = 0
        for patterns in CATEGORY_PATTERNS.values():
            for pattern in patterns:
                expected = self.evaluator.resolve_multiplier(pattern.symbol, pattern.count)
                for seed in range(4):
                    with self.subTest(pattern=pattern.label, seed=seed):
                        builder = GridBuilder(self.evaluator, Mulberry32(500 + seed))
                        construction = builder._repair_pattern(pattern, expected)
                        self.assertExact(construction, pattern)
                        if construction.repair_iterations > 0:
                            repaired += 1
        self.assertGreater(repaired, 0)

    def test_repair_pass_reaches_zero_win_loss_grids(self):
        repaired = 0
        for seed in range(20):
            construction = GridBuilder(self.evaluator, Mulberry32(900 + seed))._repair_loss()
            self.assertTrue(construction.exact)
            self.assertEqual(construction.multiplier, 0.0)
            self.assertEqual(self.evaluator.evaluate(construction.grid, 1).total_win, 0)
            if construction.repair_iterations > 0:
                repaired += 1
        self.assertGreater(repaired, 0)

    def test_lattice_grid_pays_nothing(self):
        builder = GridBuilder(self.evaluator, Mulberry32(5))
        for _ in range(10):
            self.assertEqual(self.evaluator.evaluate(builder.lattice_grid(), 1).total_win, 0)


# ============================================================
# Lifecycle
# ============================================================

class TestCatalogLifecycle(unittest.TestCase):

    def setUp(self):
        self.catalog = small_catalog(source=Mulberry32(3))

    def test_next_scenario(self):
        for _ in range(20):
            scenario = self.catalog.next_scenario()
            self.assertIsInstance(scenario.category, ScenarioCategory)
            self.assertGreaterEqual(scenario.display_id, 0)
            self.assertLess(scenario.display_id, DISPLAY_ID_RANGE)
        self.assertEqual(self.catalog.stats["issued"], 20)
        self.assertEqual(
            self.catalog.stats["exact"] + self.catalog.stats["degraded"], 20
        )

    def test_seeded_draws_reproducible(self):
        other = small_catalog(source=Mulberry32(3))
        a = [self.catalog.next_scenario().to_dict() for _ in range(5)]
        b = [other.next_scenario().to_dict() for _ in range(5)]
        self.assertEqual(a, b)

    def test_to_dict(self):
        data = self.catalog.next_scenario().to_dict()
        self.assertEqual(set(data), {"id", "category", "grid", "base_multiplier", "degraded"})
        self.assertIn(data["category"], [c.value for c in ScenarioCategory])

    def test_degradation_recorded_not_raised(self):
        definition = ScenarioDefinition(id=0, category=ScenarioCategory.PARTIAL, seed=123)
        with patch.object(GridBuilder, "is_exact", staticmethod(lambda *args: False)):
            with self.assertLogs("slotengine.scenarios", level="WARNING"):
                result = self.catalog.materialize(definition, display_id=5)
        self.assertTrue(result.degraded)
        self.assertGreater(result.base_multiplier, 0)
        self.assertEqual(self.catalog.stats["degraded"], 1)
        self.assertEqual(len(self.catalog.degradations), 1)
        record = self.catalog.degradations[0].to_dict()
        self.assertEqual(record["category"], "partial")
        self.assertEqual(record["deck_id"], 0)
        self.assertEqual(record["repair_iterations"], 64)
        self.assertEqual(self.catalog.degradations.maxlen, 100)

    def test_close(self):
        self.catalog.close()
        self.assertTrue(self.catalog.closed)
        self.assertEqual(len(self.catalog), 0)
        with self.assertRaises(CatalogClosedError):
            self.catalog.next_scenario()
        self.catalog.close()

    def test_shares_injected_evaluator(self):
        evaluator = PaylineEvaluator(default_layout())
        catalog = ScenarioCatalog.build(SEED, evaluator=evaluator,
                                        category_counts=SMALL_COUNTS, total=100)
        self.assertIs(catalog.evaluator, evaluator)


if __name__ == "__main__":
    unittest.main(verbosity=2)
