#!/usr/bin/env python3
"""
SLOTENGINE — Tooling & HTTP Tests

Run: python tests_tools_web.py -v

Test categories:
  TestMonteCarloHelpers  — streak / distribution / uniformity helpers
  TestMonteCarloAudit    — catalog + symbol weight audits
  TestSlotCli            — argparse subcommands rendered through rich
  TestSlotApi            — /api/slot blueprint via Flask test_client
"""

import io
import json
import os
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from rich.console import Console

from config.slot_layout import default_layout
from sim_engine.slots import Mulberry32, ScenarioCatalog, ScenarioCategory, SlotMachine, WeightedRngEngine
from tools.slot_montecarlo import (
    MonteCarloValidator, _analyze_streaks, _chi_squared_uniformity, _win_distribution,
)

SMALL_COUNTS = {
    ScenarioCategory.LOSS: 50,
    ScenarioCategory.PARTIAL: 30,
    ScenarioCategory.WIN_LOW: 12,
    ScenarioCategory.WIN_MID: 6,
    ScenarioCategory.WIN_HIGH: 2,
}


def small_machine() -> SlotMachine:
    return SlotMachine.start(
        layout=default_layout(), master_seed=0xC0DEFACE, source=Mulberry32(9),
        category_counts=SMALL_COUNTS, total=100,
    )


def quiet_grid() -> list:
    pool = ["1", "3", "4", "5"]
    return [[pool[(row + 2 * reel) % 4] for reel in range(5)] for row in range(6)]


# ============================================================
# Monte Carlo
# ============================================================

class TestMonteCarloHelpers(unittest.TestCase):

    def test_streaks(self):
        streaks = _analyze_streaks([0, 0, 1.2, 3, 0, 0, 0, 0.6])
        self.assertEqual(streaks["max_loss_streak"], 3)
        self.assertEqual(streaks["max_win_streak"], 2)
        self.assertEqual(streaks["total_wins"], 3)
        self.assertEqual(streaks["total_losses"], 5)
        self.assertEqual(_analyze_streaks([]), {})

    def test_distribution_buckets(self):
        dist = _win_distribution([0, 0.5, 1.5, 3, 7, 20, 75, 150])
        for bucket in ["0x", "0-1x", "1-2x", "2-5x", "5-10x", "10-50x", "50-100x", "100x+"]:
            self.assertEqual(dist[bucket], 12.5, bucket)

    def test_chi_squared_bins(self):
        class Cycle:
            def __init__(self):
                self.i = 0

            def random(self):
                value = (self.i % 100 + 0.5) / 100
                self.i += 1
                return value

        chi2, passed = _chi_squared_uniformity(Cycle(), n_samples=10_000, n_bins=100)
        self.assertAlmostEqual(chi2, 0.0)
        self.assertTrue(passed)


class TestMonteCarloAudit(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.catalog = ScenarioCatalog.build(
            0xC0DEFACE, layout=default_layout(), category_counts=SMALL_COUNTS, total=100,
        )
        cls.mc = MonteCarloValidator(tolerance=0.05, seed=0xC0DEFACE)

    def test_catalog_audit(self):
        result = self.mc.validate_catalog(self.catalog, n_rounds=200, chi_samples=10_000)
        self.assertEqual(result.n_rounds, 200)
        self.assertAlmostEqual(result.theoretical_rtp, self.catalog.theoretical_rtp())
        self.assertGreaterEqual(result.exact_match_rate, 0.95)
        self.assertAlmostEqual(sum(m for m, _ in result.category_frequencies.values()), 1.0)
        self.assertAlmostEqual(result.category_frequencies["loss"][1], 0.5)
        self.assertIn("SCENARIO CATALOG", result.summary())
        data = result.to_dict()
        self.assertIn("construction", data)
        json.dumps(data)

    def test_audit_leaves_live_catalog_stats_alone(self):
        machine = small_machine()
        machine.play(1.0)
        before = machine.stats()["catalog"]

        self.mc.validate_catalog(machine.catalog, n_rounds=100, chi_samples=1_000)

        self.assertEqual(machine.stats()["catalog"], before)
        self.assertEqual(machine.catalog.stats["issued"], 1)

    def test_symbol_audit(self):
        engine = WeightedRngEngine(default_layout(), source=Mulberry32(4))
        result = self.mc.validate_symbols(engine, n_draws=50_000)
        self.assertAlmostEqual(sum(result.expected.values()), 1.0)
        self.assertAlmostEqual(sum(result.observed.values()), 1.0)
        self.assertLess(result.max_deviation, 0.02)

    def test_report(self):
        report = self.mc.validate_all(self.catalog, n_rounds=50, n_draws=5_000)
        data = json.loads(report.to_json())
        self.assertEqual(data["report_type"], "Slot Monte Carlo Audit")
        self.assertEqual(data["catalog"]["n_rounds"], 50)
        self.assertIn("SLOT MONTE CARLO AUDIT", report.summary())


# ============================================================
# CLI
# ============================================================

class TestSlotCli(unittest.TestCase):

    def _run(self, *argv):
        from tools.slot_cli import main
        buffer = io.StringIO()
        code = main(list(argv), console=Console(file=buffer, width=200))
        return code, buffer.getvalue()

    def test_layout(self):
        code, out = self._run("layout")
        self.assertEqual(code, 0)
        self.assertIn("paylines", out)
        self.assertIn("target_rtp", out)

    def test_weights(self):
        code, out = self._run("weights", "--rtp", "2.0")
        self.assertEqual(code, 0)
        self.assertIn("wild", out)
        self.assertIn("RTP 2.000", out)

    def test_scenario(self):
        code, out = self._run("scenario", "--seed", "0xC0DEFACE", "--draw-seed", "7", "--bet", "2")
        self.assertEqual(code, 0)
        self.assertIn("Total win", out)

    def test_simulate_json(self):
        code, out = self._run("simulate", "--rounds", "30", "--draws", "2000", "--seed", "42", "--json")
        self.assertIn(code, (0, 1))
        self.assertIn("overall_pass", out)

    def test_configuration_error_exit_code(self):
        with patch.dict(os.environ, {"SLOT_TARGET_RTP": "5"}):
            code, out = self._run("layout")
        self.assertEqual(code, 2)
        self.assertIn("Configuration error", out)

    def test_malformed_env_number_exit_code(self):
        with patch.dict(os.environ, {"SLOT_MASTER_SEED": "not-a-seed"}):
            code, out = self._run("simulate", "--rounds", "10", "--draws", "100")
        self.assertEqual(code, 2)
        self.assertIn("SLOT_MASTER_SEED", out)


# ============================================================
# HTTP API
# ============================================================

class TestSlotApi(unittest.TestCase):

    def setUp(self):
        from web_app import create_app
        self.machine = small_machine()
        self.app = create_app(self.machine)
        self.client = self.app.test_client()

    def test_spin(self):
        resp = self.client.post("/api/slot/spin", json={"bet": 2})
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["bet"], 2)
        self.assertEqual(len(data["scenario"]["grid"]), 6)
        self.assertEqual(data["payout"], data["result"]["total_win"])

    def test_spin_default_bet(self):
        resp = self.client.post("/api/slot/spin", json={})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["bet"], 1.0)

    def test_spin_validation(self):
        resp = self.client.post("/api/slot/spin", json={"bet": -1})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["details"][0]["field"], "bet")

        resp = self.client.post("/api/slot/spin", json={"bet": "lots"})
        self.assertEqual(resp.status_code, 400)

    def test_spin_bet_limit(self):
        with patch.dict(os.environ, {"SLOT_MAX_SPIN_BET": "10"}):
            resp = self.client.post("/api/slot/spin", json={"bet": 11})
        self.assertEqual(resp.status_code, 400)

    def test_spin_in_progress(self):
        self.machine._lock.acquire()
        try:
            resp = self.client.post("/api/slot/spin", json={"bet": 1})
        finally:
            self.machine._lock.release()
        self.assertEqual(resp.status_code, 409)

    def test_spin_after_shutdown(self):
        self.machine.shutdown()
        resp = self.client.post("/api/slot/spin", json={"bet": 1})
        self.assertEqual(resp.status_code, 503)

    def test_evaluate(self):
        grid = quiet_grid()
        grid[0] = ["2"] * 5
        resp = self.client.post("/api/slot/evaluate", json={"grid": grid, "bet": 1})
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertAlmostEqual(data["total_win"], 3.6)
        self.assertEqual(data["winning_lines"][0]["id"], "payline-1")

    def test_evaluate_validation(self):
        resp = self.client.post("/api/slot/evaluate", json={"grid": "nope"})
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post("/api/slot/evaluate", json={"grid": []})
        self.assertEqual(resp.status_code, 400)

    def test_stats(self):
        self.client.post("/api/slot/spin", json={"bet": 1})
        resp = self.client.get("/api/slot/stats")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["spins"], 1)
        self.assertEqual(data["catalog"]["size"], 100)

    def test_layout(self):
        resp = self.client.get("/api/slot/layout")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(len(data["paylines"]), 20)
        self.assertEqual(data["payouts"]["2"]["5"], 3.6)

    def test_health_and_404(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.get_json()["status"], "ok")
        resp = self.client.get("/api/slot/nope")
        self.assertEqual(resp.status_code, 404)
        self.assertIn("error", resp.get_json())


if __name__ == "__main__":
    # Configure logging to suppress noise during tests
    import logging
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
