"""
SLOTENGINE — Scenario Catalog

The authoritative outcome source for settled spins.

Build phase (once, explicitly, at startup):
    A deck of 100,000 outcome categories is expanded from fixed counts,
    shuffled with a seeded Mulberry32, and each entry receives a sequential
    id and an independent 32-bit seed. The deck never changes afterwards.

Per spin:
    A deck entry is chosen with a fresh uniform index (independent draws,
    not a cursor). The entry's seed drives a local PRNG that picks a
    pattern for the category and searches for a grid that pays exactly
    that pattern:

        1. up to 200 random base grids with the pattern stamped on a random
           payline/column able to carry it alone (see viable_lines),
           accepted on an exact evaluation;
        2. otherwise a bounded repair pass (64 iterations) that breaks
           every unintended winning line, restarting on a fresh grid and
           line when no unprotected cell can break an offender;
        3. loss scenarios fall back to a lattice grid checked to pay nothing.

    Misses are returned as best-effort grids and recorded as
    GenerationDegradation; they never propagate as errors.

Usage:
    catalog = ScenarioCatalog.build(master_seed=0xC0DEFACE)
    result = catalog.next_scenario()
    result.grid, result.base_multiplier
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from config.slot_layout import WILD, MIN_RUN, SlotLayout, load_layout
from sim_engine.slots.errors import (
    CatalogClosedError, ConfigurationError, GenerationDegradation,
)
from sim_engine.slots.evaluator import EvaluationLine, PaylineEvaluator, PaylineWin, SpinResult
from sim_engine.slots.prng import (
    Mulberry32, UniformSource, derive_seed, pick, pick_index, shuffle_in_place, system_source,
)

logger = logging.getLogger("slotengine.scenarios")


# ═══════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════

class ScenarioCategory(str, Enum):
    LOSS     = "loss"
    PARTIAL  = "partial"
    WIN_LOW  = "win_low"
    WIN_MID  = "win_mid"
    WIN_HIGH = "win_high"


TOTAL_SCENARIOS = 100_000

CATEGORY_COUNTS: dict[ScenarioCategory, int] = {
    ScenarioCategory.LOSS:     50_000,
    ScenarioCategory.PARTIAL:  30_000,
    ScenarioCategory.WIN_LOW:  12_000,
    ScenarioCategory.WIN_MID:   6_000,
    ScenarioCategory.WIN_HIGH:  2_000,
}

DISPLAY_ID_RANGE = 100_000
MAX_ATTEMPTS = 200
REPAIR_ITERATIONS = 64
MULTIPLIER_EPSILON = 1e-6
DEGRADATION_LOG_SIZE = 100


@dataclass(frozen=True)
class PatternDefinition:
    kind: str            # "payline" | "column"
    symbol: str
    count: int

    @property
    def label(self) -> str:
        return f"{self.kind}:{self.symbol}x{self.count}"


def _p(symbol: str, count: int) -> PatternDefinition:
    return PatternDefinition("payline", symbol, count)


def _c(symbol: str, count: int) -> PatternDefinition:
    return PatternDefinition("column", symbol, count)


# Wild runs only appear at full line length: a shorter wild run is always
# extended by the first non-wild symbol after it.
CATEGORY_PATTERNS: dict[ScenarioCategory, tuple] = {
    ScenarioCategory.LOSS:     (),
    ScenarioCategory.PARTIAL:  (_p("1", 3), _p("2", 3), _c("1", 3), _c("2", 3)),
    ScenarioCategory.WIN_LOW:  (_p("1", 4), _p("2", 4), _p("3", 3), _c("1", 5), _c("2", 4)),
    ScenarioCategory.WIN_MID:  (_p("3", 5), _p("4", 4), _p("5", 4), _c("3", 5), _c("4", 5)),
    ScenarioCategory.WIN_HIGH: (_p("5", 5), _c("4", 6), _c("5", 6), _p(WILD, 5), _c(WILD, 6)),
}


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScenarioDefinition:
    id: int
    category: ScenarioCategory
    seed: int


@dataclass
class ScenarioResult:
    """Settled outcome for one spin.

    `display_id` is an independent draw in [0, 100000) for external
    settlement encoding; it is not the deck entry id.
    """
    display_id: int
    category: ScenarioCategory
    grid: list
    base_multiplier: float
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.display_id,
            "category": self.category.value,
            "grid": [list(row) for row in self.grid],
            "base_multiplier": self.base_multiplier,
            "degraded": self.degraded,
        }


@dataclass
class GridConstruction:
    grid: list
    multiplier: float
    exact: bool
    attempts: int
    repair_iterations: int
    achieved_total: float
    pattern: Optional[PatternDefinition] = None

    @property
    def repaired(self) -> bool:
        return self.exact and self.repair_iterations > 0


# ═══════════════════════════════════════════════════════════════
# Validation & Deck Construction
# ═══════════════════════════════════════════════════════════════

def validate_catalog_config(counts: dict, total: int, patterns: dict,
                            evaluator: PaylineEvaluator) -> None:
    """Fail fast on inconsistent category counts or unreachable patterns."""
    unknown = [key for key in counts if not isinstance(key, ScenarioCategory)]
    if unknown:
        raise ConfigurationError(f"Unknown scenario categories: {unknown}")
    negative = {c.value: n for c, n in counts.items() if n < 0}
    if negative:
        raise ConfigurationError(f"Negative category counts: {negative}")

    declared = sum(counts.values())
    if declared != total:
        raise ConfigurationError(
            f"Scenario distribution ({declared}) does not match total scenario count ({total})"
        )

    layout = evaluator.layout
    line_length = {
        "payline": layout.reels.count,
        "column": layout.reels.visible_rows,
    }
    for category, count in counts.items():
        if category == ScenarioCategory.LOSS or count == 0:
            continue
        candidates = patterns.get(category, ())
        if not candidates:
            raise ConfigurationError(f"No patterns declared for category '{category.value}'")
        for pattern in candidates:
            if pattern.kind not in line_length:
                raise ConfigurationError(f"Unknown pattern type '{pattern.kind}'")
            if pattern.symbol not in layout.symbols:
                raise ConfigurationError(f"Pattern {pattern.label} uses an undeclared symbol")
            length = line_length[pattern.kind]
            if pattern.count < MIN_RUN or pattern.count > length:
                raise ConfigurationError(
                    f"Pattern {pattern.label} does not fit a {pattern.kind} of length {length}"
                )
            if pattern.symbol == WILD and pattern.count != length:
                raise ConfigurationError(
                    f"Pattern {pattern.label}: wild runs shorter than the line are unreachable"
                )
            if evaluator.resolve_multiplier(pattern.symbol, pattern.count) <= 0:
                raise ConfigurationError(f"Pattern {pattern.label} has no payout")
            if not viable_lines(evaluator, pattern):
                raise ConfigurationError(
                    f"Pattern {pattern.label} cannot be placed without a second winning line"
                )


def viable_lines(evaluator: PaylineEvaluator, pattern: PatternDefinition) -> list:
    """Lines that can carry `pattern` without forcing a second winning line.

    Another line is forced to win when enough of its first MIN_RUN cells sit
    inside the stamped run: all of them for a symbol run, all but one for a
    wild run, since wilds take the symbol of the next cell.
    """
    lines = evaluator.paylines if pattern.kind == "payline" else evaluator.columns
    limit = MIN_RUN - 1 if pattern.symbol == WILD else MIN_RUN
    viable = []
    for line in lines:
        run = set(line.cells[:pattern.count])
        forced = any(
            sum(1 for cell in other.cells[:MIN_RUN] if cell in run) >= limit
            for other in evaluator.lines
            if other.line_id != line.line_id
        )
        if not forced:
            viable.append(line)
    return viable


def build_deck(counts: dict, prng: Mulberry32) -> tuple:
    categories = []
    for category in ScenarioCategory:
        categories.extend([category] * counts.get(category, 0))

    shuffle_in_place(categories, prng)

    return tuple(
        ScenarioDefinition(id=index, category=category, seed=derive_seed(prng))
        for index, category in enumerate(categories)
    )


# ═══════════════════════════════════════════════════════════════
# Grid Builder
# ═══════════════════════════════════════════════════════════════

class GridBuilder:
    """Bounded search for a grid that pays exactly one pattern (or nothing)."""

    def __init__(self, evaluator: PaylineEvaluator, prng: UniformSource):
        self.evaluator = evaluator
        self.layout: SlotLayout = evaluator.layout
        self.prng = prng
        self._lines: dict = {}

    # ── Primitives ───────────────────────────────────────────

    def base_grid(self, exclude: Optional[str] = None) -> list:
        symbols = self.layout.base_symbols
        pool = [s for s in symbols if s != exclude] or list(symbols)
        rows, reels = self.layout.reels.visible_rows, self.layout.reels.count
        return [[pick(pool, self.prng) for _ in range(reels)] for _ in range(rows)]

    def filler_choices(self, *excluded: str) -> list:
        choices = [s for s in self.layout.base_symbols if s not in excluded]
        if not choices:
            choices = [s for s in self.layout.symbol_keys if s not in excluded]
        return choices

    def filler(self, *excluded: str) -> str:
        choices = self.filler_choices(*excluded)
        if not choices:
            return self.layout.base_symbols[0]
        return pick(choices, self.prng)

    def choose_line(self, pattern: PatternDefinition) -> EvaluationLine:
        lines = self._lines.get(pattern)
        if lines is None:
            lines = self._lines[pattern] = viable_lines(self.evaluator, pattern)
        return pick(lines, self.prng)

    def stamp(self, grid: list, pattern: PatternDefinition, line: EvaluationLine,
              preserve: bool = False) -> None:
        """Write the pattern run onto `line`; cells past the run get filler.

        With `preserve`, cells past the run are only replaced when they would
        extend the run (pattern symbol or wild).
        """
        for position, (row, reel) in enumerate(line.cells):
            if position < pattern.count:
                grid[row][reel] = pattern.symbol
            elif not preserve or grid[row][reel] in (pattern.symbol, WILD):
                grid[row][reel] = self.filler(pattern.symbol, WILD)

    def evaluate(self, grid: list) -> SpinResult:
        return self.evaluator.evaluate(grid, 1)

    @staticmethod
    def is_exact(result: SpinResult, pattern: Optional[PatternDefinition],
                 expected: float) -> bool:
        if pattern is None:
            return result.total_win == 0
        if abs(result.total_win - expected) >= MULTIPLIER_EPSILON:
            return False
        return all(
            w.symbol == pattern.symbol and w.count == pattern.count
            for w in result.winning_lines
        )

    # ── Search ───────────────────────────────────────────────

    def build(self, pattern: Optional[PatternDefinition]) -> GridConstruction:
        expected = (
            self.evaluator.resolve_multiplier(pattern.symbol, pattern.count) if pattern else 0.0
        )
        exclude = pattern.symbol if pattern else None

        for attempt in range(1, MAX_ATTEMPTS + 1):
            grid = self.base_grid(exclude)
            if pattern:
                self.stamp(grid, pattern, self.choose_line(pattern))
            result = self.evaluate(grid)
            if self.is_exact(result, pattern, expected):
                return GridConstruction(
                    grid=grid, multiplier=expected, exact=True, attempts=attempt,
                    repair_iterations=0, achieved_total=result.total_win, pattern=pattern,
                )

        if pattern:
            return self._repair_pattern(pattern, expected)
        return self._repair_loss()

    def _repair_pattern(self, pattern: PatternDefinition, expected: float) -> GridConstruction:
        iterations = 0
        restarts = 0
        grid, line = self._restamp(pattern)
        result = self.evaluate(grid)
        while iterations < REPAIR_ITERATIONS and not self.is_exact(result, pattern, expected):
            iterations += 1
            protected = frozenset(line.cells[:pattern.count])
            intended = self._intended(pattern, line)
            offenders = [w for w in result.winning_lines if not intended(w)]
            if offenders and not self.disrupt(grid, offenders[0], protected, intended, pattern.symbol):
                # stalled: no unprotected cell can break the offender on this line
                restarts += 1
                grid, line = self._restamp(pattern)
            else:
                self.stamp(grid, pattern, line, preserve=True)
            result = self.evaluate(grid)

        if restarts:
            logger.debug(f"Repair of {pattern.label} restarted {restarts} times")
        return GridConstruction(
            grid=grid, multiplier=expected, exact=self.is_exact(result, pattern, expected),
            attempts=MAX_ATTEMPTS, repair_iterations=iterations,
            achieved_total=result.total_win, pattern=pattern,
        )

    def _restamp(self, pattern: PatternDefinition) -> tuple:
        grid = self.base_grid(pattern.symbol)
        line = self.choose_line(pattern)
        self.stamp(grid, pattern, line, preserve=True)
        return grid, line

    @staticmethod
    def _intended(pattern: PatternDefinition, line: EvaluationLine) -> Callable[[PaylineWin], bool]:
        def intended(win: PaylineWin) -> bool:
            return (
                win.line_id == line.line_id
                and win.symbol == pattern.symbol
                and win.count == pattern.count
            )
        return intended

    def _repair_loss(self) -> GridConstruction:
        grid = self.base_grid()
        iterations = 0
        result = self.evaluate(grid)
        while iterations < REPAIR_ITERATIONS and result.total_win != 0:
            iterations += 1
            if not self.disrupt(grid, result.winning_lines[0], frozenset(), lambda w: False):
                break
            result = self.evaluate(grid)

        if result.total_win != 0:
            grid = self.lattice_grid()
            result = self.evaluate(grid)

        return GridConstruction(
            grid=grid, multiplier=0.0, exact=result.total_win == 0,
            attempts=MAX_ATTEMPTS, repair_iterations=iterations,
            achieved_total=result.total_win,
        )

    def disrupt(self, grid: list, win: PaylineWin, protected: frozenset,
                intended: Callable[[PaylineWin], bool], *exclusions: str) -> bool:
        """Overwrite one run cell of `win` with a filler.

        Candidate cells are the unprotected cells of the run, positions that
        cut the run below MIN_RUN first. The (cell, filler) pair leaving the
        fewest unintended winning lines is kept.
        """
        line = self.evaluator.line(win.line_id)
        if line is None:
            return False
        run = list(enumerate(line.cells[:win.count]))
        ordered = [c for p, c in reversed(run) if p < MIN_RUN] + [c for p, c in reversed(run) if p >= MIN_RUN]
        cells = [c for c in ordered if c not in protected]
        if not cells:
            return False

        choices = self.filler_choices(win.symbol, WILD, *exclusions)
        if not choices:
            return False
        shuffled = list(choices)
        shuffle_in_place(shuffled, self.prng)

        best = None
        for row, reel in cells:
            original = grid[row][reel]
            for symbol in shuffled:
                if symbol == original:
                    continue
                grid[row][reel] = symbol
                score = sum(1 for w in self.evaluate(grid).winning_lines if not intended(w))
                if best is None or score < best[0]:
                    best = (score, row, reel, symbol)
            grid[row][reel] = original

        if best is None:
            return False
        _, row, reel, symbol = best
        grid[row][reel] = symbol
        return True

    def lattice_grid(self) -> list:
        """Modular lattice of the base symbols, checked to pay nothing."""
        pool = list(self.layout.base_symbols)
        size = len(pool)
        rows, reels = self.layout.reels.visible_rows, self.layout.reels.count
        offset = pick_index(self.prng, size)
        fallback = None
        for row_step in range(1, size):
            for reel_step in range(1, size):
                grid = [
                    [pool[(offset + row * row_step + reel * reel_step) % size] for reel in range(reels)]
                    for row in range(rows)
                ]
                if self.evaluate(grid).total_win == 0:
                    return grid
                fallback = fallback or grid
        return fallback or self.base_grid()


# ═══════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════

class ScenarioCatalog:
    """Immutable deck of outcome categories plus on-demand grid construction.

    Build with `ScenarioCatalog.build()` once at startup and inject the
    instance wherever spins are settled.
    """

    def __init__(self, deck: tuple, evaluator: PaylineEvaluator,
                 source: UniformSource = None, patterns: dict = None,
                 master_seed: Optional[int] = None):
        self._deck = tuple(deck)
        self.evaluator = evaluator
        self.source = source or system_source()
        self.patterns = dict(patterns or CATEGORY_PATTERNS)
        self.master_seed = master_seed
        self.stats = {"issued": 0, "exact": 0, "repaired": 0, "degraded": 0}
        self.degradations: deque = deque(maxlen=DEGRADATION_LOG_SIZE)
        self._closed = False

    @classmethod
    def build(cls, master_seed: Optional[int] = None, *, layout: SlotLayout = None,
              evaluator: PaylineEvaluator = None, source: UniformSource = None,
              category_counts: dict = None, total: int = TOTAL_SCENARIOS,
              patterns: dict = None) -> "ScenarioCatalog":
        """Validate the static data and build the shuffled deck."""
        if evaluator is None:
            evaluator = PaylineEvaluator(layout or load_layout())
        counts = dict(CATEGORY_COUNTS if category_counts is None else category_counts)
        patterns = dict(CATEGORY_PATTERNS if patterns is None else patterns)
        validate_catalog_config(counts, total, patterns, evaluator)

        if master_seed is None:
            from config.settings import EngineConfig
            master_seed = EngineConfig.master_seed()

        t0 = time.time()
        deck = build_deck(counts, Mulberry32(master_seed))
        logger.info(
            f"Scenario catalog built: {len(deck):,} entries, seed=0x{master_seed:08X}, "
            f"{time.time() - t0:.2f}s"
        )
        return cls(deck, evaluator, source=source, patterns=patterns, master_seed=master_seed)

    # ── Deck access ──────────────────────────────────────────

    @property
    def deck(self) -> tuple:
        return self._deck

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._deck)

    def category_counts(self) -> dict:
        counts = {category: 0 for category in ScenarioCategory}
        for definition in self._deck:
            counts[definition.category] += 1
        return counts

    def expected_multiplier(self, category: ScenarioCategory) -> float:
        """Mean base multiplier of a category under uniform pattern choice."""
        candidates = self.patterns.get(category, ())
        if not candidates:
            return 0.0
        return sum(
            self.evaluator.resolve_multiplier(p.symbol, p.count) for p in candidates
        ) / len(candidates)

    def theoretical_rtp(self) -> float:
        """Expected base multiplier per scenario draw."""
        if not self._deck:
            return 0.0
        counts = self.category_counts()
        return sum(
            n / len(self._deck) * self.expected_multiplier(category)
            for category, n in counts.items()
        )

    # ── Scenario issue ───────────────────────────────────────

    def next_scenario(self) -> ScenarioResult:
        if self._closed:
            raise CatalogClosedError("Scenario catalog has been shut down")
        definition = self._deck[pick_index(self.source, len(self._deck))]
        result = self.materialize(definition)
        self.stats["issued"] += 1
        return result

    def pick_pattern(self, category: ScenarioCategory,
                     prng: UniformSource) -> Optional[PatternDefinition]:
        candidates = self.patterns.get(category, ())
        if category == ScenarioCategory.LOSS or not candidates:
            return None
        return pick(candidates, prng)

    def construct(self, definition: ScenarioDefinition) -> GridConstruction:
        """Build the grid for a deck entry. Same entry, same grid.

        Leaves `stats` and `degradations` untouched, so audits can replay
        entries of a live catalog.
        """
        prng = Mulberry32(definition.seed)
        pattern = self.pick_pattern(definition.category, prng)
        return GridBuilder(self.evaluator, prng).build(pattern)

    def materialize(self, definition: ScenarioDefinition,
                    display_id: Optional[int] = None) -> ScenarioResult:
        construction = self.construct(definition)
        self._record(definition, construction)

        if display_id is None:
            display_id = pick_index(self.source, DISPLAY_ID_RANGE)

        return ScenarioResult(
            display_id=display_id,
            category=definition.category,
            grid=construction.grid,
            base_multiplier=construction.multiplier,
            degraded=not construction.exact,
        )

    def _record(self, definition: ScenarioDefinition, construction: GridConstruction) -> None:
        if construction.exact:
            self.stats["exact"] += 1
            if construction.repaired:
                self.stats["repaired"] += 1
                logger.debug(
                    f"Scenario {definition.id} ({definition.category.value}) repaired in "
                    f"{construction.repair_iterations} iterations"
                )
            return

        self.stats["degraded"] += 1
        degradation = GenerationDegradation(
            category=definition.category.value,
            deck_id=definition.id,
            expected_multiplier=construction.multiplier,
            achieved_total=construction.achieved_total,
            pattern=construction.pattern.label if construction.pattern else None,
            attempts=construction.attempts,
            repair_iterations=construction.repair_iterations,
        )
        self.degradations.append(degradation)
        logger.warning(
            f"Degraded scenario {definition.id} ({definition.category.value}, "
            f"{degradation.pattern or 'no pattern'}): expected {construction.multiplier}, "
            f"achieved {construction.achieved_total:.6f}"
        )

    def close(self) -> None:
        """Explicit shutdown. Further next_scenario() calls raise."""
        if self._closed:
            return
        self._closed = True
        self._deck = ()
        logger.info("Scenario catalog closed")
