"""
SLOTENGINE — Weighted RNG Engine

Draws the cosmetic symbols shown while reels spin (including each reel's
hidden buffer row). It never decides the settled grid; that comes from the
ScenarioCatalog.

Weights are biased by three running signals:
  • RTP band     — paid/wagered vs target, normalized by the floor/ceiling range
  • Loss streak  — consecutive zero-payout spins past a trigger
  • Drought      — trailing-window win rate below a threshold

The engine owns mutable state. Callers serialize begin_spin → complete_spin
per logical spin (see SlotMachine).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from config.slot_layout import SlotLayout, SymbolTier, default_layout
from sim_engine.slots.prng import UniformSource, system_source

logger = logging.getLogger("slotengine.rng")


@dataclass
class RngRunningState:
    total_wagered: float = 0.0
    total_paid: float = 0.0
    loss_streak: int = 0
    recent_payouts: list = field(default_factory=list)
    spins: int = 0

    def to_dict(self) -> dict:
        return {
            "total_wagered": round(self.total_wagered, 6),
            "total_paid": round(self.total_paid, 6),
            "loss_streak": self.loss_streak,
            "recent_payouts": list(self.recent_payouts),
            "spins": self.spins,
        }


@dataclass(frozen=True)
class SymbolWeight:
    symbol: str
    weight: float
    adjustment: float


class WeightedRngEngine:
    """RTP-feedback symbol generator."""

    def __init__(self, layout: SlotLayout = None, source: UniformSource = None):
        self.layout = layout or default_layout()
        self.config = self.layout.rng
        self.source = source or system_source()
        self._total_wagered = 0.0
        self._total_paid = 0.0
        self._loss_streak = 0
        self._spins = 0
        self._recent = deque(maxlen=self.config.trend.window)

    # ── Spin accounting ──────────────────────────────────────

    def begin_spin(self, bet: float) -> None:
        if bet < 0:
            raise ValueError(f"Bet must be non-negative, got {bet}")
        self._total_wagered += bet

    def complete_spin(self, payout: float, primary_symbol: Optional[str] = None,
                      winning_lines: int = 0) -> None:
        self._total_paid += payout
        self._spins += 1
        if payout > 0:
            self._loss_streak = 0
        else:
            self._loss_streak += 1
        # deque(maxlen) evicts the oldest payout once the window is full
        self._recent.append(payout)

        logger.debug(
            f"spin #{self._spins} payout={payout} symbol={primary_symbol} "
            f"lines={winning_lines} rtp={self.current_rtp:.4f} streak={self._loss_streak}"
        )

    def reset(self) -> None:
        """Explicit reset of all running statistics."""
        self._total_wagered = 0.0
        self._total_paid = 0.0
        self._loss_streak = 0
        self._spins = 0
        self._recent.clear()
        logger.info("RNG running state reset")

    # ── Derived signals ──────────────────────────────────────

    @property
    def current_rtp(self) -> float:
        if self._total_wagered <= 0:
            return self.config.target_rtp
        return self._total_paid / self._total_wagered

    @property
    def recent_win_rate(self) -> float:
        if not self._recent:
            return 0.0
        wins = sum(1 for payout in self._recent if payout > 0)
        return wins / len(self._recent)

    @property
    def loss_streak(self) -> int:
        return self._loss_streak

    @property
    def state(self) -> RngRunningState:
        return RngRunningState(
            total_wagered=self._total_wagered,
            total_paid=self._total_paid,
            loss_streak=self._loss_streak,
            recent_payouts=list(self._recent),
            spins=self._spins,
        )

    # ── Weights ──────────────────────────────────────────────

    def compute_weights(self) -> list[SymbolWeight]:
        cfg = self.config

        diff = self.current_rtp - cfg.target_rtp
        paying_too_much = diff > 0
        band = (cfg.ceiling_rtp - cfg.target_rtp) if paying_too_much else (cfg.target_rtp - cfg.floor_rtp)
        normalized_diff = min(abs(diff) / band, 1.0) if band > 0 else 0.0

        win_rate = self.recent_win_rate
        trend = cfg.trend
        drought_factor = 1.0
        if win_rate < trend.drought_threshold:
            drought_factor = 1 + (trend.drought_threshold - win_rate) * trend.drought_boost

        streak = cfg.streak
        loss_streak_boost = 0.0
        if self._loss_streak >= streak.trigger:
            loss_streak_boost = min(
                (self._loss_streak - streak.trigger + 1) * streak.boost_per_loss,
                streak.max_boost,
            )

        high_scale = cfg.tier_scale(SymbolTier.HIGH)
        weights = []
        for key, symbol in self.layout.symbols.items():
            tier = symbol.payout_tier
            tier_scale = cfg.tier_scale(tier)
            adjustment = 1.0

            if normalized_diff > 0:
                step = cfg.adjustment_step * normalized_diff * tier_scale
                adjustment += -step if paying_too_much else step

            if loss_streak_boost > 0:
                if tier != SymbolTier.LOW:
                    adjustment += loss_streak_boost * (tier_scale / high_scale)
                else:
                    adjustment -= loss_streak_boost * 0.25

            if tier != SymbolTier.LOW and drought_factor > 1:
                adjustment *= 1 + (drought_factor - 1) * tier_scale
            elif tier == SymbolTier.LOW and paying_too_much:
                adjustment *= 1 + normalized_diff * 0.15

            adjustment = max(cfg.min_weight_multiplier, min(cfg.max_weight_multiplier, adjustment))
            weight = max(1.0, symbol.base_weight * adjustment * symbol.volatility_score)
            weights.append(SymbolWeight(symbol=key, weight=weight, adjustment=adjustment))

        return weights

    def baseline_weights(self) -> dict[str, float]:
        """Weights with no feedback applied (adjustment = 1)."""
        return {
            key: max(1.0, symbol.base_weight * symbol.volatility_score)
            for key, symbol in self.layout.symbols.items()
        }

    def next_symbol(self) -> str:
        weights = self.compute_weights()
        total = sum(w.weight for w in weights)
        pointer = self.source.random() * total
        for entry in weights:
            pointer -= entry.weight
            if pointer <= 0:
                return entry.symbol
        return weights[-1].symbol

    def draw_strip(self, length: int) -> list[str]:
        """`length` consecutive filler symbols."""
        return [self.next_symbol() for _ in range(max(0, length))]
