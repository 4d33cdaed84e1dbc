"""
SLOTENGINE — Payline Evaluator

Scores any rows x reels grid against the fixed paylines and every column.

Rules:
  • Scan each line in order. The first non-wild symbol becomes the primary.
  • The run continues while a cell equals the primary or is wild, and stops
    at the first mismatch or missing/unknown cell.
  • A run of only wilds resolves to "wild".
  • Runs of 3+ pay bet × multiplier, where the multiplier is the highest
    payout threshold ≤ the run length.
  • Paylines and columns are scored independently; overlapping coverage is
    not deduplicated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Sequence

from config.slot_layout import MIN_RUN, WILD, SlotLayout, default_layout


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class EvaluationLine:
    """Cells (row, reel) covered by a payline or a column, in scan order."""
    line_id: str
    kind: str                 # "payline" | "column"
    index: int                # 0-based within its kind
    cells: tuple


@dataclass(frozen=True)
class SequenceWin:
    symbol: str
    count: int
    multiplier: float


@dataclass(frozen=True)
class PaylineWin:
    line_id: str
    symbol: str
    count: int
    multiplier: float
    payout: float

    def to_dict(self) -> dict:
        return {
            "id": self.line_id,
            "symbol": self.symbol,
            "count": self.count,
            "multiplier": self.multiplier,
            "payout": self.payout,
        }


@dataclass
class SpinResult:
    total_win: float
    winning_lines: list[PaylineWin] = field(default_factory=list)
    dominant_symbol: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "total_win": round(self.total_win, 10),
            "winning_lines": [w.to_dict() for w in self.winning_lines],
            "dominant_symbol": self.dominant_symbol,
        }


# ═══════════════════════════════════════════════════════════════
# Evaluator
# ═══════════════════════════════════════════════════════════════

class PaylineEvaluator:
    """Pure, deterministic grid scorer bound to one layout."""

    def __init__(self, layout: SlotLayout = None):
        self.layout = layout or default_layout()
        self._payout_steps = {
            symbol: sorted(table.items())
            for symbol, table in self.layout.payouts.items()
        }
        self.lines = self._build_lines()
        self._lines_by_id = {line.line_id: line for line in self.lines}

    def _build_lines(self) -> tuple:
        lines = []
        for index, payline in enumerate(self.layout.paylines):
            cells = tuple((row, reel) for reel, row in enumerate(payline))
            lines.append(EvaluationLine(f"payline-{index + 1}", "payline", index, cells))
        rows = self.layout.reels.visible_rows
        for column in range(self.layout.reels.count):
            cells = tuple((row, column) for row in range(rows))
            lines.append(EvaluationLine(f"column-{column + 1}", "column", column, cells))
        return tuple(lines)

    @property
    def paylines(self) -> list[EvaluationLine]:
        return [line for line in self.lines if line.kind == "payline"]

    @property
    def columns(self) -> list[EvaluationLine]:
        return [line for line in self.lines if line.kind == "column"]

    def line(self, line_id: str) -> Optional[EvaluationLine]:
        return self._lines_by_id.get(line_id)

    def resolve_multiplier(self, symbol: str, count: int) -> float:
        """Highest threshold ≤ count wins; 0 if none applies."""
        multiplier = 0.0
        for threshold, value in self._payout_steps.get(symbol, ()):
            if count >= threshold:
                multiplier = float(value)
        return multiplier

    def _normalise(self, value) -> Optional[str]:
        if isinstance(value, str) and value in self.layout.symbols:
            return value
        return None

    def evaluate_sequence(self, sequence: Sequence) -> Optional[SequenceWin]:
        primary = None
        count = 0

        for raw in sequence:
            symbol = self._normalise(raw)
            if symbol is None:
                break
            if primary is None and symbol != WILD:
                primary = symbol
            if symbol == WILD or symbol == primary:
                count += 1
            else:
                break

        if count < MIN_RUN:
            return None
        if primary is None:
            primary = WILD

        multiplier = self.resolve_multiplier(primary, count)
        if multiplier <= 0:
            return None
        return SequenceWin(symbol=primary, count=count, multiplier=multiplier)

    @staticmethod
    def _cell(grid, row: int, reel: int):
        try:
            return grid[row][reel]
        except (IndexError, KeyError, TypeError):
            return None

    def line_symbols(self, grid, line: EvaluationLine) -> list:
        return [self._cell(grid, row, reel) for row, reel in line.cells]

    def evaluate(self, grid, bet: float) -> SpinResult:
        winning_lines: list[PaylineWin] = []

        for line in self.lines:
            result = self.evaluate_sequence(self.line_symbols(grid, line))
            if result is None:
                continue
            winning_lines.append(PaylineWin(
                line_id=line.line_id,
                symbol=result.symbol,
                count=result.count,
                multiplier=result.multiplier,
                payout=bet * result.multiplier,
            ))

        total_win = sum(w.payout for w in winning_lines)

        dominant = None
        for win in winning_lines:
            if dominant is None or win.payout > dominant.payout:
                dominant = win

        return SpinResult(
            total_win=total_win,
            winning_lines=winning_lines,
            dominant_symbol=dominant.symbol if dominant else None,
        )


@lru_cache(maxsize=1)
def _default_evaluator() -> PaylineEvaluator:
    return PaylineEvaluator(default_layout())


def evaluate_spin(grid, bet: float) -> SpinResult:
    """Evaluate against the built-in layout."""
    return _default_evaluator().evaluate(grid, bet)
