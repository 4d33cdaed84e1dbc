"""
SLOTENGINE — Monte Carlo Audit

Draws N scenarios from a ScenarioCatalog and validates:
  • Measured RTP (base multiplier per draw) within tolerance of theoretical
  • Category frequencies match the declared deck composition
  • Every settled grid evaluates to its base multiplier (exact-match rate)
  • Degraded constructions are counted and reported
  • No exploitable patterns (streak analysis, distribution uniformity)

A second check draws cosmetic symbols from a WeightedRngEngine and compares
observed frequencies with the engine's computed weights.

All randomness comes from seeded Mulberry32 sources so runs are reproducible.

Usage:
    from tools.slot_montecarlo import MonteCarloValidator
    mc = MonteCarloValidator(seed=0xC0DEFACE)
    report = mc.validate_all(n_rounds=20_000)
    print(report.summary())
"""

from __future__ import annotations

import json
import logging
import statistics
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sim_engine.slots.evaluator import PaylineEvaluator
from sim_engine.slots.prng import Mulberry32, UniformSource, pick_index
from sim_engine.slots.rng_engine import WeightedRngEngine
from sim_engine.slots.scenarios import MULTIPLIER_EPSILON, ScenarioCatalog, ScenarioCategory

logger = logging.getLogger("slotengine.montecarlo")


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass
class SimulationResult:
    """Results from a catalog simulation run."""
    n_rounds: int
    theoretical_rtp: float
    measured_rtp: float
    rtp_delta: float
    rtp_pass: bool
    tolerance: float = 0.05

    measured_std_dev: float = 0.0
    measured_hit_frequency: float = 0.0
    measured_max_win: float = 0.0
    measured_median_win: float = 0.0

    category_frequencies: dict = field(default_factory=dict)   # {category: (measured, declared)}
    exact_matches: int = 0
    degraded: int = 0

    win_distribution: dict = field(default_factory=dict)
    streak_analysis: dict = field(default_factory=dict)
    chi_squared: float = 0.0
    chi_squared_pass: bool = True

    duration_seconds: float = 0.0
    rounds_per_second: float = 0.0
    seed: str = ""

    @property
    def exact_match_rate(self) -> float:
        return self.exact_matches / self.n_rounds if self.n_rounds else 0.0

    @property
    def passed(self) -> bool:
        return self.rtp_pass and self.chi_squared_pass

    def summary(self) -> str:
        status = "✅ PASS" if self.rtp_pass else "❌ FAIL"
        lines = [
            "═══ Monte Carlo: SCENARIO CATALOG ═══",
            f"  Rounds:      {self.n_rounds:,}",
            f"  Theoretical: {self.theoretical_rtp*100:.4f}%",
            f"  Measured:    {self.measured_rtp*100:.4f}%",
            f"  Delta:       {self.rtp_delta*100:.4f}%  (±{self.tolerance*100:.1f}%)",
            f"  RTP Check:   {status}",
            f"  Std Dev:     {self.measured_std_dev:.4f}",
            f"  Hit Freq:    {self.measured_hit_frequency*100:.2f}%",
            f"  Max Win:     {self.measured_max_win:.2f}x",
            f"  Exact Match: {self.exact_match_rate*100:.2f}%  ({self.degraded} degraded)",
            f"  Speed:       {self.rounds_per_second:,.0f} rounds/sec",
        ]
        for category, (measured, declared) in self.category_frequencies.items():
            lines.append(f"  {category:9s} {measured*100:6.2f}%  (declared {declared*100:.2f}%)")
        if self.streak_analysis:
            lines.append(f"  Max Loss Streak: {self.streak_analysis.get('max_loss_streak', 'N/A')}")
            lines.append(f"  Max Win Streak:  {self.streak_analysis.get('max_win_streak', 'N/A')}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "n_rounds": self.n_rounds,
            "theoretical_rtp_pct": round(self.theoretical_rtp * 100, 4),
            "measured_rtp_pct": round(self.measured_rtp * 100, 4),
            "rtp_delta_pct": round(self.rtp_delta * 100, 4),
            "rtp_pass": self.rtp_pass,
            "tolerance_pct": self.tolerance * 100,
            "volatility": {
                "std_dev": round(self.measured_std_dev, 4),
                "hit_frequency_pct": round(self.measured_hit_frequency * 100, 2),
                "max_win_mult": round(self.measured_max_win, 2),
                "median_win_mult": round(self.measured_median_win, 2),
            },
            "categories": {
                category: {"measured_pct": round(m * 100, 3), "declared_pct": round(d * 100, 3)}
                for category, (m, d) in self.category_frequencies.items()
            },
            "construction": {
                "exact_match_pct": round(self.exact_match_rate * 100, 3),
                "degraded": self.degraded,
            },
            "distribution": self.win_distribution,
            "streak_analysis": self.streak_analysis,
            "uniformity": {
                "chi_squared": round(self.chi_squared, 4),
                "pass": self.chi_squared_pass,
            },
            "performance": {
                "duration_s": round(self.duration_seconds, 2),
                "rounds_per_sec": int(self.rounds_per_second),
            },
            "seed": self.seed,
        }


@dataclass
class SymbolFrequencyResult:
    """Observed cosmetic symbol frequencies vs computed weights."""
    n_draws: int
    expected: dict = field(default_factory=dict)
    observed: dict = field(default_factory=dict)
    max_deviation: float = 0.0
    tolerance: float = 0.01

    @property
    def passed(self) -> bool:
        return self.max_deviation <= self.tolerance

    def summary(self) -> str:
        status = "✅ PASS" if self.passed else "❌ FAIL"
        lines = [
            "═══ Monte Carlo: SYMBOL WEIGHTS ═══",
            f"  Draws:       {self.n_draws:,}",
            f"  Max Δ:       {self.max_deviation*100:.3f}%  (±{self.tolerance*100:.1f}%)",
            f"  Check:       {status}",
        ]
        for symbol, expected in self.expected.items():
            lines.append(
                f"  {symbol:5s} expected={expected*100:6.2f}% observed={self.observed.get(symbol, 0)*100:6.2f}%"
            )
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "n_draws": self.n_draws,
            "expected_pct": {k: round(v * 100, 3) for k, v in self.expected.items()},
            "observed_pct": {k: round(v * 100, 3) for k, v in self.observed.items()},
            "max_deviation_pct": round(self.max_deviation * 100, 4),
            "pass": self.passed,
        }


@dataclass
class ValidationReport:
    catalog: Optional[SimulationResult] = None
    symbols: Optional[SymbolFrequencyResult] = None
    generated_at: str = ""

    def __post_init__(self):
        self.generated_at = datetime.now(timezone.utc).isoformat()

    @property
    def overall_pass(self) -> bool:
        checks = [r.passed for r in (self.catalog, self.symbols) if r is not None]
        return all(checks)

    def summary(self) -> str:
        lines = [
            "═══════════════════════════════════════════════════",
            "    SLOT MONTE CARLO AUDIT",
            "═══════════════════════════════════════════════════",
            f"  Generated: {self.generated_at}",
            f"  Overall: {'✅ ALL PASS' if self.overall_pass else '❌ SOME FAILED'}",
            "",
        ]
        if self.catalog:
            lines.append(self.catalog.summary())
        if self.symbols:
            lines.append(self.symbols.summary())
        return "\n".join(lines)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps({
            "report_type": "Slot Monte Carlo Audit",
            "generated_at": self.generated_at,
            "overall_pass": self.overall_pass,
            "catalog": self.catalog.to_dict() if self.catalog else None,
            "symbols": self.symbols.to_dict() if self.symbols else None,
        }, indent=indent)


# ═══════════════════════════════════════════════════════════════
# Streak & Distribution Analysis
# ═══════════════════════════════════════════════════════════════

def _analyze_streaks(outcomes: list[float]) -> dict:
    """Longest win/loss runs in a sequence of multipliers."""
    if not outcomes:
        return {}

    max_win = max_loss = cur_win = cur_loss = total_wins = 0
    for o in outcomes:
        if o > 0:
            total_wins += 1
            cur_win += 1
            cur_loss = 0
            max_win = max(max_win, cur_win)
        else:
            cur_loss += 1
            cur_win = 0
            max_loss = max(max_loss, cur_loss)

    return {
        "max_win_streak": max_win,
        "max_loss_streak": max_loss,
        "total_wins": total_wins,
        "total_losses": len(outcomes) - total_wins,
    }


_BUCKETS = (
    ("0x", 0.0), ("0-1x", 1.0), ("1-2x", 2.0), ("2-5x", 5.0),
    ("5-10x", 10.0), ("10-50x", 50.0), ("50-100x", 100.0),
)


def _win_distribution(outcomes: list[float]) -> dict:
    """Percentage of outcomes per multiplier bucket."""
    counts = {label: 0 for label, _ in _BUCKETS}
    counts["100x+"] = 0
    for o in outcomes:
        if o == 0:
            counts["0x"] += 1
            continue
        for label, upper in _BUCKETS[1:]:
            if o < upper:
                counts[label] += 1
                break
        else:
            counts["100x+"] += 1
    n = len(outcomes) or 1
    return {k: round(v / n * 100, 2) for k, v in counts.items()}


def _chi_squared_uniformity(source: UniformSource, n_samples: int = 100_000,
                            n_bins: int = 100) -> tuple[float, bool]:
    """Chi-squared test for source uniformity."""
    bins = [0] * n_bins
    for _ in range(n_samples):
        bins[pick_index(source, n_bins)] += 1
    expected = n_samples / n_bins
    chi2 = sum((obs - expected) ** 2 / expected for obs in bins)
    # 99 degrees of freedom, critical value at α=0.01 ≈ 135.8
    return chi2, chi2 < 135.8


# ═══════════════════════════════════════════════════════════════
# Monte Carlo Validator
# ═══════════════════════════════════════════════════════════════

class MonteCarloValidator:
    """Audits a scenario catalog and the cosmetic symbol weights."""

    def __init__(self, tolerance: float = 0.05, seed: int = 0xC0DEFACE):
        """
        Args:
            tolerance: Maximum allowed absolute RTP deviation (0.05 = ±5%)
            seed: Seed for the draw source and the uniformity test
        """
        self.tolerance = tolerance
        self.base_seed = seed & 0xFFFFFFFF

    def validate_catalog(self, catalog: ScenarioCatalog, n_rounds: int = 20_000,
                         chi_samples: int = 100_000) -> SimulationResult:
        evaluator: PaylineEvaluator = catalog.evaluator
        source = Mulberry32(self.base_seed)
        chi2, chi_pass = _chi_squared_uniformity(Mulberry32(self.base_seed + 999), chi_samples)

        counts = {category: 0 for category in ScenarioCategory}
        outcomes: list[float] = []
        exact = 0
        degraded = 0

        t0 = time.time()
        for _ in range(n_rounds):
            definition = catalog.deck[pick_index(source, len(catalog))]
            construction = catalog.construct(definition)
            counts[definition.category] += 1
            outcomes.append(construction.multiplier)
            achieved = evaluator.evaluate(construction.grid, 1).total_win
            if abs(achieved - construction.multiplier) < MULTIPLIER_EPSILON:
                exact += 1
            if not construction.exact:
                degraded += 1
        duration = time.time() - t0

        theoretical = catalog.theoretical_rtp()
        measured = sum(outcomes) / n_rounds if n_rounds else 0.0
        delta = abs(measured - theoretical)
        wins = [o for o in outcomes if o > 0]
        declared = catalog.category_counts()
        size = len(catalog) or 1

        result = SimulationResult(
            n_rounds=n_rounds,
            theoretical_rtp=theoretical,
            measured_rtp=measured,
            rtp_delta=delta,
            rtp_pass=delta <= self.tolerance,
            tolerance=self.tolerance,
            measured_std_dev=statistics.stdev(outcomes) if len(outcomes) > 1 else 0.0,
            measured_hit_frequency=len(wins) / n_rounds if n_rounds else 0.0,
            measured_max_win=max(outcomes) if outcomes else 0.0,
            measured_median_win=statistics.median(wins) if wins else 0.0,
            category_frequencies={
                category.value: (counts[category] / n_rounds if n_rounds else 0.0,
                                 declared[category] / size)
                for category in ScenarioCategory
            },
            exact_matches=exact,
            degraded=degraded,
            win_distribution=_win_distribution(outcomes),
            streak_analysis=_analyze_streaks(outcomes),
            chi_squared=chi2,
            chi_squared_pass=chi_pass,
            duration_seconds=duration,
            rounds_per_second=n_rounds / duration if duration > 0 else 0,
            seed=f"0x{self.base_seed:08X}",
        )
        logger.info(
            f"Catalog audit: {n_rounds:,} rounds, RTP {measured:.4f} vs {theoretical:.4f}, "
            f"{degraded} degraded"
        )
        return result

    def validate_symbols(self, engine: WeightedRngEngine, n_draws: int = 200_000,
                         tolerance: float = 0.01) -> SymbolFrequencyResult:
        """Observed next_symbol() frequencies vs compute_weights() with no spin feedback."""
        weights = engine.compute_weights()
        total = sum(w.weight for w in weights)
        expected = {w.symbol: w.weight / total for w in weights}

        counts = {symbol: 0 for symbol in expected}
        for _ in range(n_draws):
            counts[engine.next_symbol()] += 1

        observed = {symbol: n / n_draws for symbol, n in counts.items()} if n_draws else {}
        deviation = max(
            (abs(observed.get(s, 0.0) - p) for s, p in expected.items()), default=0.0,
        )
        return SymbolFrequencyResult(
            n_draws=n_draws, expected=expected, observed=observed,
            max_deviation=deviation, tolerance=tolerance,
        )

    def validate_all(self, catalog: ScenarioCatalog = None, n_rounds: int = 20_000,
                     n_draws: int = 200_000) -> ValidationReport:
        if catalog is None:
            catalog = ScenarioCatalog.build(self.base_seed)
        engine = WeightedRngEngine(catalog.evaluator.layout, source=Mulberry32(self.base_seed ^ 0x5EED))
        return ValidationReport(
            catalog=self.validate_catalog(catalog, n_rounds),
            symbols=self.validate_symbols(engine, n_draws),
        )
