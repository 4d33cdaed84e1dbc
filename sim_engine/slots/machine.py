"""
SLOTENGINE — Slot Machine

Coordinates one spin end to end:

    begin_spin(bet) → next_scenario() → cosmetic reel strips
        → evaluate(grid, bet) → settle payout → complete_spin(...)

The settled grid always comes from the ScenarioCatalog. The weighted RNG
engine only supplies the symbols that scroll past while the reels spin and
each reel's hidden buffer symbol.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from config.slot_layout import SlotLayout, load_layout
from sim_engine.slots.errors import CatalogClosedError, SpinInProgressError
from sim_engine.slots.evaluator import PaylineEvaluator, SpinResult
from sim_engine.slots.prng import UniformSource
from sim_engine.slots.rng_engine import WeightedRngEngine
from sim_engine.slots.scenarios import ScenarioCatalog, ScenarioResult

logger = logging.getLogger("slotengine.machine")

# (scenario, evaluation) -> payout actually credited
Authorizer = Callable[[ScenarioResult, SpinResult], float]


@dataclass
class ReelStrip:
    reel: int
    filler: list[str] = field(default_factory=list)
    buffer: Optional[str] = None

    def to_dict(self) -> dict:
        return {"reel": self.reel, "filler": list(self.filler), "buffer": self.buffer}


@dataclass
class SpinOutcome:
    scenario: ScenarioResult
    result: SpinResult
    bet: float
    payout: float
    reels: list[ReelStrip] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scenario": self.scenario.to_dict(),
            "result": self.result.to_dict(),
            "bet": self.bet,
            "payout": self.payout,
            "reels": [strip.to_dict() for strip in self.reels],
        }


class SlotMachine:
    """Single-session spin coordinator. One spin at a time."""

    def __init__(self, catalog: ScenarioCatalog, rng_engine: WeightedRngEngine,
                 evaluator: PaylineEvaluator = None):
        self.catalog = catalog
        self.rng_engine = rng_engine
        self.evaluator = evaluator or catalog.evaluator
        self.layout: SlotLayout = self.evaluator.layout
        self._lock = threading.Lock()
        self._spins = 0
        self._total_bet = 0.0
        self._total_paid = 0.0
        self._closed = False

    @classmethod
    def start(cls, layout: SlotLayout = None, master_seed: Optional[int] = None,
              source: UniformSource = None, **catalog_options) -> "SlotMachine":
        """Build the evaluator, catalog and RNG engine for one session."""
        layout = layout or load_layout()
        evaluator = PaylineEvaluator(layout)
        catalog = ScenarioCatalog.build(
            master_seed, evaluator=evaluator, source=source, **catalog_options
        )
        rng_engine = WeightedRngEngine(layout, source=source)
        logger.info(
            f"Slot machine started: {layout.reels.count} reels x {layout.reels.visible_rows} rows, "
            f"{len(evaluator.paylines)} paylines, theoretical RTP {catalog.theoretical_rtp():.4f}"
        )
        return cls(catalog, rng_engine, evaluator)

    # ── Spin ─────────────────────────────────────────────────

    def play(self, bet: float, authorize: Optional[Authorizer] = None) -> SpinOutcome:
        """Run one spin.

        Raises SpinInProgressError when another spin is still settling, and
        ValueError for a negative bet.
        """
        if not self._lock.acquire(blocking=False):
            raise SpinInProgressError("A spin is already in progress")
        try:
            return self._play(bet, authorize)
        finally:
            self._lock.release()

    def _play(self, bet: float, authorize: Optional[Authorizer]) -> SpinOutcome:
        if self._closed:
            raise CatalogClosedError("Slot machine has been shut down")
        self.rng_engine.begin_spin(bet)
        try:
            scenario = self.catalog.next_scenario()
            reels = self._draw_reels()
            result = self.evaluator.evaluate(scenario.grid, bet)

            payout = result.total_win
            if authorize is not None:
                payout = float(authorize(scenario, result))
        except Exception as e:
            # A wager that was begun is always completed; a failed settlement pays nothing.
            logger.error(f"Spin failed after wager of {bet}, settled as a loss: {e}")
            self._settle(bet, 0.0)
            raise

        self._settle(bet, payout, result)

        logger.debug(
            f"Spin {self._spins}: scenario {scenario.display_id} ({scenario.category.value}) "
            f"bet={bet} win={result.total_win} paid={payout}"
        )
        return SpinOutcome(scenario=scenario, result=result, bet=bet, payout=payout, reels=reels)

    def _settle(self, bet: float, payout: float, result: Optional[SpinResult] = None) -> None:
        self.rng_engine.complete_spin(
            payout,
            primary_symbol=result.dominant_symbol if result else None,
            winning_lines=len(result.winning_lines) if result else 0,
        )
        self._spins += 1
        self._total_bet += bet
        self._total_paid += payout

    def _draw_reels(self) -> list[ReelStrip]:
        spin = self.layout.spin
        strips = []
        for reel in range(self.layout.reels.count):
            filler = self.rng_engine.draw_strip(spin.filler_steps + reel * spin.filler_stagger)
            strips.append(ReelStrip(reel=reel, filler=filler, buffer=self.rng_engine.next_symbol()))
        return strips

    # ── Session ──────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def stats(self) -> dict:
        rtp = self._total_paid / self._total_bet if self._total_bet > 0 else 0.0
        return {
            "spins": self._spins,
            "total_bet": round(self._total_bet, 6),
            "total_paid": round(self._total_paid, 6),
            "session_rtp": round(rtp, 6),
            "rng": self.rng_engine.state.to_dict(),
            "current_rtp": round(self.rng_engine.current_rtp, 6),
            "catalog": {
                "size": len(self.catalog),
                "theoretical_rtp": round(self.catalog.theoretical_rtp(), 6),
                **self.catalog.stats,
                "recent_degradations": [d.to_dict() for d in self.catalog.degradations],
            },
        }

    def reset_statistics(self) -> None:
        with self._lock:
            self._spins = 0
            self._total_bet = 0.0
            self._total_paid = 0.0
            self.rng_engine.reset()
        logger.info("Session statistics reset")

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.catalog.close()
        logger.info("Slot machine shut down")
