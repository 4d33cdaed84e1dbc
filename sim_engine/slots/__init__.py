"""
SLOTENGINE — Slot Outcome Engine

Payline evaluation, RTP-feedback cosmetic symbol generation and the
pre-shuffled scenario catalog that settles every spin.

Usage:
    from sim_engine.slots import SlotMachine
    machine = SlotMachine.start(master_seed=0xC0DEFACE)
    outcome = machine.play(bet=1.0)
    outcome.result.total_win
"""

from sim_engine.slots.errors import (
    CatalogClosedError, ConfigurationError, GenerationDegradation, SpinInProgressError,
)
from sim_engine.slots.prng import Mulberry32, UniformSource, system_source
from sim_engine.slots.evaluator import (
    EvaluationLine, PaylineEvaluator, PaylineWin, SequenceWin, SpinResult, evaluate_spin,
)
from sim_engine.slots.rng_engine import RngRunningState, SymbolWeight, WeightedRngEngine
from sim_engine.slots.scenarios import (
    CATEGORY_COUNTS, CATEGORY_PATTERNS, TOTAL_SCENARIOS,
    PatternDefinition, ScenarioCatalog, ScenarioCategory, ScenarioDefinition, ScenarioResult,
)
from sim_engine.slots.machine import ReelStrip, SlotMachine, SpinOutcome

__all__ = [
    "CatalogClosedError", "ConfigurationError", "GenerationDegradation", "SpinInProgressError",
    "Mulberry32", "UniformSource", "system_source",
    "EvaluationLine", "PaylineEvaluator", "PaylineWin", "SequenceWin", "SpinResult", "evaluate_spin",
    "RngRunningState", "SymbolWeight", "WeightedRngEngine",
    "CATEGORY_COUNTS", "CATEGORY_PATTERNS", "TOTAL_SCENARIOS",
    "PatternDefinition", "ScenarioCatalog", "ScenarioCategory", "ScenarioDefinition", "ScenarioResult",
    "ReelStrip", "SlotMachine", "SpinOutcome",
]
