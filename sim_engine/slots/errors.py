"""Error taxonomy for the slot outcome engine."""

from dataclasses import dataclass, field
import time
from typing import Optional

from config.slot_layout import ConfigurationError  # noqa: F401  (re-exported)


@dataclass
class GenerationDegradation:
    """Record of a scenario grid that missed its exact target within budget.

    Never raised. The catalog counts and logs these and returns the
    best-effort grid to the caller.
    """
    category: str
    deck_id: int
    expected_multiplier: float
    achieved_total: float
    pattern: Optional[str] = None
    attempts: int = 0
    repair_iterations: int = 0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "deck_id": self.deck_id,
            "pattern": self.pattern,
            "expected_multiplier": self.expected_multiplier,
            "achieved_total": round(self.achieved_total, 6),
            "attempts": self.attempts,
            "repair_iterations": self.repair_iterations,
            "timestamp": self.timestamp,
        }


class SpinInProgressError(RuntimeError):
    """A spin was requested while another one is still being settled."""


class CatalogClosedError(RuntimeError):
    """The scenario catalog was shut down and can no longer issue scenarios."""
