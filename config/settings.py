"""
SLOTENGINE — Runtime Configuration

Environment-driven knobs for the outcome engine. Values are read at call
time so a process can be reconfigured through `.env` or the environment
before the engines are built:

    SLOT_MASTER_SEED      catalog master seed (int, 0x-prefix allowed)
    SLOT_TARGET_RTP       RNG feedback target RTP (0-1)
    SLOT_FLOOR_RTP        lower RTP band edge
    SLOT_CEILING_RTP      upper RTP band edge
    SLOT_TREND_WINDOW     trailing payout window size
    SLOT_LOG_LEVEL        logging level for entry points
    SLOT_MAX_SPIN_BET     largest bet the HTTP API accepts
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

from config.slot_layout import ConfigurationError

load_dotenv()

BASE_DIR = Path(__file__).parent.parent

DEFAULT_MASTER_SEED = 0xC0DEFACE

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def _env_float(name: str):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str):
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw, 0)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


class EngineConfig:

    @classmethod
    def master_seed(cls) -> int:
        """Catalog master seed. Accepts decimal or 0x-prefixed hex."""
        seed = _env_int("SLOT_MASTER_SEED")
        if seed is None:
            return DEFAULT_MASTER_SEED
        return seed & 0xFFFFFFFF

    @classmethod
    def rng_overrides(cls) -> dict:
        """Partial `RngConfig` dict built from the SLOT_* environment."""
        overrides = {}
        for env_key, field_name in (
            ("SLOT_TARGET_RTP", "target_rtp"),
            ("SLOT_FLOOR_RTP", "floor_rtp"),
            ("SLOT_CEILING_RTP", "ceiling_rtp"),
        ):
            value = _env_float(env_key)
            if value is not None:
                overrides[field_name] = value

        window = _env_int("SLOT_TREND_WINDOW")
        if window is not None:
            overrides["trend"] = {"window": window}
        return overrides

    @classmethod
    def log_level(cls) -> int:
        name = os.getenv("SLOT_LOG_LEVEL", "INFO").upper()
        return getattr(logging, name, logging.INFO)

    @classmethod
    def max_spin_bet(cls) -> float:
        value = _env_float("SLOT_MAX_SPIN_BET")
        return value if value is not None else 10_000.0


def configure_logging(level: int = None) -> None:
    """Entry-point logging setup (web app, CLI). Library code never calls this."""
    logging.basicConfig(
        level=level if level is not None else EngineConfig.log_level(),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
