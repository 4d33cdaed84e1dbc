"""
SLOTENGINE — Slot Layout Configuration

Static data for the 5-reel x 6-row machine: symbol tiers and weights,
count→multiplier payout tables, the fixed payline set, and the RNG feedback
parameters. Defined as Pydantic models so overrides are type-checked, then
cross-checked by `validate_layout()` which fails fast with ConfigurationError.

Usage:
    from config.slot_layout import load_layout
    layout = load_layout()                       # defaults + SLOT_* env
    layout = load_layout({"rng": {"target_rtp": 0.95}})
"""

from __future__ import annotations

import copy
from enum import Enum
from pydantic import BaseModel, Field, ValidationError


WILD = "wild"
MIN_RUN = 3


class ConfigurationError(Exception):
    """Static layout or catalog data is inconsistent. Fatal at startup."""


# ═══════════════════════════════════════════════════════════════
# Enums & Sub-Models
# ═══════════════════════════════════════════════════════════════

class SymbolTier(str, Enum):
    LOW     = "low"
    MEDIUM  = "medium"
    HIGH    = "high"
    JACKPOT = "jackpot"


class SymbolConfig(BaseModel):
    difficulty: int = 1
    base_weight: float = Field(gt=0)
    payout_tier: SymbolTier
    volatility_score: float = Field(1.0, gt=0)


class ReelsConfig(BaseModel):
    count: int = Field(5, ge=1)
    visible_rows: int = Field(6, ge=1)


class StreakConfig(BaseModel):
    trigger: int = Field(5, ge=1)
    boost_per_loss: float = 0.18
    max_boost: float = 1.2


class TrendConfig(BaseModel):
    window: int = Field(40, ge=1)
    drought_threshold: float = Field(0.28, ge=0.0, le=1.0)
    drought_boost: float = 0.45


class RngConfig(BaseModel):
    """Feedback loop that biases cosmetic symbol weights toward target RTP."""
    target_rtp: float = Field(0.94, gt=0.0)
    floor_rtp: float = Field(0.90, ge=0.0)
    ceiling_rtp: float = Field(0.985, gt=0.0)
    adjustment_step: float = 0.65
    min_weight_multiplier: float = Field(0.25, gt=0.0)
    max_weight_multiplier: float = Field(3.2, gt=0.0)
    payout_tier_scaling: dict[SymbolTier, float] = Field(default_factory=lambda: {
        SymbolTier.LOW: 0.45,
        SymbolTier.MEDIUM: 0.85,
        SymbolTier.HIGH: 1.3,
        SymbolTier.JACKPOT: 1.85,
    })
    streak: StreakConfig = Field(default_factory=StreakConfig)
    trend: TrendConfig = Field(default_factory=TrendConfig)

    def tier_scale(self, tier: SymbolTier) -> float:
        return self.payout_tier_scaling[tier]


class SpinConfig(BaseModel):
    """Cosmetic reel strip depth. Reel i shows steps + i * stagger fillers."""
    filler_steps: int = Field(8, ge=0)
    filler_stagger: int = Field(3, ge=0)


# ═══════════════════════════════════════════════════════════════
# Main Layout Model
# ═══════════════════════════════════════════════════════════════

class SlotLayout(BaseModel):
    reels: ReelsConfig = Field(default_factory=ReelsConfig)
    spin: SpinConfig = Field(default_factory=SpinConfig)
    rng: RngConfig = Field(default_factory=RngConfig)
    symbols: dict[str, SymbolConfig]
    payouts: dict[str, dict[int, float]]
    paylines: list[list[int]]

    @property
    def symbol_keys(self) -> list[str]:
        return list(self.symbols.keys())

    @property
    def base_symbols(self) -> list[str]:
        """Every symbol except wild, in declaration order."""
        return [key for key in self.symbols if key != WILD]


DEFAULT_LAYOUT_DATA: dict = {
    "reels": {"count": 5, "visible_rows": 6},
    "spin": {"filler_steps": 8, "filler_stagger": 3},
    "rng": {
        "target_rtp": 0.94,
        "floor_rtp": 0.9,
        "ceiling_rtp": 0.985,
        "adjustment_step": 0.65,
        "min_weight_multiplier": 0.25,
        "max_weight_multiplier": 3.2,
        "payout_tier_scaling": {"low": 0.45, "medium": 0.85, "high": 1.3, "jackpot": 1.85},
        "streak": {"trigger": 5, "boost_per_loss": 0.18, "max_boost": 1.2},
        "trend": {"window": 40, "drought_threshold": 0.28, "drought_boost": 0.45},
    },
    "symbols": {
        "1":    {"difficulty": 1, "base_weight": 420, "payout_tier": "low",     "volatility_score": 1.0},
        "2":    {"difficulty": 2, "base_weight": 280, "payout_tier": "low",     "volatility_score": 1.05},
        "3":    {"difficulty": 3, "base_weight": 180, "payout_tier": "medium",  "volatility_score": 1.1},
        "4":    {"difficulty": 4, "base_weight": 90,  "payout_tier": "high",    "volatility_score": 1.25},
        "5":    {"difficulty": 5, "base_weight": 45,  "payout_tier": "high",    "volatility_score": 1.35},
        "wild": {"difficulty": 6, "base_weight": 12,  "payout_tier": "jackpot", "volatility_score": 1.5},
    },
    "payouts": {
        "1":    {3: 0.6, 4: 1.1,  5: 2.4, 6: 3.5},
        "2":    {3: 0.9, 4: 1.8,  5: 3.6, 6: 5.5},
        "3":    {3: 1.6, 4: 3.4,  5: 7.5, 6: 11},
        "4":    {3: 2.8, 4: 6.4,  5: 14,  6: 22},
        "5":    {3: 4.2, 4: 10.5, 5: 25,  6: 40},
        "wild": {3: 6,   4: 16,   5: 45,  6: 80},
    },
    "paylines": [
        [0, 0, 0, 0, 0],
        [1, 1, 1, 1, 1],
        [2, 2, 2, 2, 2],
        [3, 3, 3, 3, 3],
        [4, 4, 4, 4, 4],
        [5, 5, 5, 5, 5],
        [0, 1, 2, 3, 4],
        [1, 2, 3, 4, 5],
        [5, 4, 3, 2, 1],
        [4, 3, 2, 1, 0],
        [2, 1, 2, 1, 2],
        [3, 4, 3, 4, 3],
        [2, 3, 4, 3, 2],
        [3, 2, 1, 2, 3],
        [1, 2, 2, 2, 1],
        [4, 3, 3, 3, 4],
        [1, 0, 1, 0, 1],
        [4, 5, 4, 5, 4],
        [0, 1, 0, 1, 0],
        [5, 4, 5, 4, 5],
    ],
}


# ═══════════════════════════════════════════════════════════════
# Validation & Loading
# ═══════════════════════════════════════════════════════════════

def validate_layout(layout: SlotLayout) -> SlotLayout:
    """Cross-field checks Pydantic cannot express. Raises ConfigurationError."""
    reel_count = layout.reels.count
    rows = layout.reels.visible_rows

    if WILD not in layout.symbols:
        raise ConfigurationError("Symbol set must declare a 'wild' symbol")
    if not layout.base_symbols:
        raise ConfigurationError("Symbol set needs at least one non-wild symbol")

    if not layout.paylines:
        raise ConfigurationError("At least one payline is required")
    for index, line in enumerate(layout.paylines):
        if len(line) != reel_count:
            raise ConfigurationError(
                f"payline-{index + 1} has {len(line)} entries, expected {reel_count}"
            )
        bad_rows = [row for row in line if row < 0 or row >= rows]
        if bad_rows:
            raise ConfigurationError(
                f"payline-{index + 1} references rows {bad_rows} outside 0..{rows - 1}"
            )

    for symbol in layout.symbols:
        table = layout.payouts.get(symbol)
        if not table:
            raise ConfigurationError(f"No payout table for symbol '{symbol}'")
        previous = 0.0
        for threshold in sorted(table):
            if threshold < MIN_RUN:
                raise ConfigurationError(
                    f"Payout threshold {threshold} for '{symbol}' is below the minimum run {MIN_RUN}"
                )
            multiplier = table[threshold]
            if multiplier < previous:
                raise ConfigurationError(
                    f"Payouts for '{symbol}' must not decrease with run length "
                    f"({threshold} pays {multiplier} < {previous})"
                )
            previous = multiplier
    unknown = set(layout.payouts) - set(layout.symbols)
    if unknown:
        raise ConfigurationError(f"Payout tables for undeclared symbols: {sorted(unknown)}")

    rng = layout.rng
    if not (rng.floor_rtp <= rng.target_rtp <= rng.ceiling_rtp):
        raise ConfigurationError(
            f"RTP band out of order: floor={rng.floor_rtp} target={rng.target_rtp} "
            f"ceiling={rng.ceiling_rtp}"
        )
    if rng.min_weight_multiplier > rng.max_weight_multiplier:
        raise ConfigurationError("min_weight_multiplier exceeds max_weight_multiplier")
    missing_tiers = [tier.value for tier in SymbolTier if tier not in rng.payout_tier_scaling]
    if missing_tiers:
        raise ConfigurationError(f"payout_tier_scaling missing tiers: {missing_tiers}")
    if rng.payout_tier_scaling[SymbolTier.HIGH] <= 0:
        raise ConfigurationError("High-tier scaling must be positive")

    return layout


def _deep_merge(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def build_layout(data: dict) -> SlotLayout:
    """Parse and validate raw layout data."""
    try:
        layout = SlotLayout.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid slot layout: {e}") from e
    return validate_layout(layout)


def load_layout(overrides: dict = None, use_env: bool = True) -> SlotLayout:
    """Default layout, then SLOT_* environment overrides, then explicit overrides."""
    data = DEFAULT_LAYOUT_DATA
    if use_env:
        from config.settings import EngineConfig
        env_rng = EngineConfig.rng_overrides()
        if env_rng:
            data = _deep_merge(data, {"rng": env_rng})
    if overrides:
        data = _deep_merge(data, overrides)
    return build_layout(data)


def default_layout() -> SlotLayout:
    """The built-in layout, ignoring the environment."""
    return build_layout(DEFAULT_LAYOUT_DATA)
