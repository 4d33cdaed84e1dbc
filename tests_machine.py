#!/usr/bin/env python3
"""
SLOTENGINE — Slot Machine Coordinator Tests

Run: python tests_machine.py -v
"""

import sys
import threading
import unittest
from pathlib import Path

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.slot_layout import default_layout
from sim_engine.slots import (
    CatalogClosedError, Mulberry32, ScenarioCategory, SlotMachine, SpinInProgressError,
)
from sim_engine.slots.scenarios import MULTIPLIER_EPSILON

SMALL_COUNTS = {
    ScenarioCategory.LOSS: 50,
    ScenarioCategory.PARTIAL: 30,
    ScenarioCategory.WIN_LOW: 12,
    ScenarioCategory.WIN_MID: 6,
    ScenarioCategory.WIN_HIGH: 2,
}


def start_machine(seed: int = 0xC0DEFACE, source_seed: int = 5) -> SlotMachine:
    return SlotMachine.start(
        layout=default_layout(),
        master_seed=seed,
        source=Mulberry32(source_seed),
        category_counts=SMALL_COUNTS,
        total=100,
    )


class TestSlotMachinePlay(unittest.TestCase):

    def setUp(self):
        self.machine = start_machine()

    def test_payout_is_evaluated_grid(self):
        for _ in range(25):
            outcome = self.machine.play(2.0)
            self.assertEqual(outcome.bet, 2.0)
            self.assertEqual(outcome.payout, outcome.result.total_win)
            recomputed = self.machine.evaluator.evaluate(outcome.scenario.grid, 2.0)
            self.assertEqual(recomputed.total_win, outcome.result.total_win)
            if not outcome.scenario.degraded:
                self.assertLess(
                    abs(outcome.result.total_win - 2.0 * outcome.scenario.base_multiplier),
                    2 * MULTIPLIER_EPSILON,
                )

    def test_reel_strips(self):
        outcome = self.machine.play(1.0)
        self.assertEqual([s.reel for s in outcome.reels], [0, 1, 2, 3, 4])
        self.assertEqual([len(s.filler) for s in outcome.reels], [8, 11, 14, 17, 20])
        symbols = set(default_layout().symbol_keys)
        for strip in outcome.reels:
            self.assertIn(strip.buffer, symbols)
            self.assertTrue(set(strip.filler) <= symbols)

    def test_rng_engine_tracks_spins(self):
        for _ in range(3):
            self.machine.play(1.5)
        state = self.machine.rng_engine.state
        self.assertEqual(state.spins, 3)
        self.assertAlmostEqual(state.total_wagered, 4.5)
        self.assertEqual(len(state.recent_payouts), 3)

    def test_authorize_overrides_payout(self):
        outcome = self.machine.play(1.0, authorize=lambda scenario, result: 5.0)
        self.assertEqual(outcome.payout, 5.0)
        self.assertAlmostEqual(self.machine.rng_engine.state.total_paid, 5.0)
        self.assertEqual(self.machine.rng_engine.loss_streak, 0)

        self.machine.play(1.0, authorize=lambda scenario, result: 0)
        self.assertEqual(self.machine.rng_engine.loss_streak, 1)

    def test_failed_settlement_completes_spin_as_loss(self):
        def settle(scenario, result):
            raise RuntimeError("settlement service unavailable")

        with self.assertRaises(RuntimeError):
            self.machine.play(5.0, authorize=settle)

        state = self.machine.rng_engine.state
        self.assertEqual(state.spins, 1)
        self.assertAlmostEqual(state.total_wagered, 5.0)
        self.assertEqual(state.total_paid, 0.0)
        self.assertEqual(list(state.recent_payouts), [0.0])
        self.assertEqual(self.machine.rng_engine.loss_streak, 1)

        stats = self.machine.stats()
        self.assertEqual(stats["spins"], 1)
        self.assertEqual(stats["total_bet"], 5.0)
        self.assertEqual(stats["total_paid"], 0.0)
        self.assertFalse(self.machine.busy)

        outcome = self.machine.play(1.0)
        self.assertEqual(self.machine.rng_engine.state.spins, 2)
        self.assertAlmostEqual(self.machine.stats()["total_paid"], outcome.payout)

    def test_to_dict(self):
        data = self.machine.play(1.0).to_dict()
        self.assertEqual(set(data), {"scenario", "result", "bet", "payout", "reels"})
        self.assertEqual(len(data["reels"]), 5)
        self.assertEqual(len(data["scenario"]["grid"]), 6)

    def test_seeded_sessions_reproducible(self):
        other = start_machine()
        a = [self.machine.play(1.0).to_dict() for _ in range(5)]
        b = [other.play(1.0).to_dict() for _ in range(5)]
        self.assertEqual(a, b)


class TestSlotMachineSerialization(unittest.TestCase):

    def setUp(self):
        self.machine = start_machine()

    def test_reentrant_spin_rejected(self):
        errors = []

        def authorize(scenario, result):
            try:
                self.machine.play(1.0)
            except SpinInProgressError as e:
                errors.append(e)
            return result.total_win

        self.machine.play(1.0, authorize=authorize)
        self.assertEqual(len(errors), 1)
        self.assertEqual(self.machine.rng_engine.state.spins, 1)
        self.assertFalse(self.machine.busy)

    def test_concurrent_spin_rejected(self):
        entered = threading.Event()
        release = threading.Event()
        outcomes = []

        def authorize(scenario, result):
            entered.set()
            release.wait(5)
            return result.total_win

        worker = threading.Thread(
            target=lambda: outcomes.append(self.machine.play(1.0, authorize=authorize))
        )
        worker.start()
        self.assertTrue(entered.wait(5))
        self.assertTrue(self.machine.busy)
        with self.assertRaises(SpinInProgressError):
            self.machine.play(1.0)
        release.set()
        worker.join(5)
        self.assertEqual(len(outcomes), 1)
        self.assertFalse(self.machine.busy)

    def test_negative_bet_releases_lock(self):
        with self.assertRaises(ValueError):
            self.machine.play(-1.0)
        self.assertFalse(self.machine.busy)
        self.machine.play(1.0)
        self.assertEqual(self.machine.rng_engine.state.spins, 1)


class TestSlotMachineSession(unittest.TestCase):

    def setUp(self):
        self.machine = start_machine()

    def test_stats(self):
        for _ in range(4):
            self.machine.play(1.0)
        stats = self.machine.stats()
        self.assertEqual(stats["spins"], 4)
        self.assertEqual(stats["total_bet"], 4.0)
        self.assertEqual(stats["rng"]["spins"], 4)
        self.assertEqual(stats["catalog"]["size"], 100)
        self.assertEqual(stats["catalog"]["issued"], 4)
        self.assertIn("recent_degradations", stats["catalog"])

    def test_reset_statistics(self):
        for _ in range(3):
            self.machine.play(1.0)
        self.machine.reset_statistics()
        stats = self.machine.stats()
        self.assertEqual(stats["spins"], 0)
        self.assertEqual(stats["total_paid"], 0.0)
        self.assertEqual(stats["rng"]["spins"], 0)
        self.assertEqual(stats["rng"]["recent_payouts"], [])

    def test_shutdown(self):
        self.machine.shutdown()
        with self.assertRaises(CatalogClosedError):
            self.machine.play(1.0)
        self.assertEqual(self.machine.rng_engine.state.total_wagered, 0)
        # idempotent
        self.machine.shutdown()


if __name__ == "__main__":
    # Configure logging to suppress noise during tests
    import logging
    logging.disable(logging.WARNING)

    unittest.main(verbosity=2)
