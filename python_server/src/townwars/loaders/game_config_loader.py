"""Game configuration — loads tunable constants from config/game.yaml.

Provides a single ``GameConfig`` dataclass that is loaded once at startup
and then passed (or injected) wherever constants are needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

log = logging.getLogger(__name__)

DEFAULT_GAME_CONFIG_PATH = "config/game.yaml"


@dataclass
class GameConfig:
    """All tunable engine constants.

    Loaded from ``config/game.yaml``.  Every field has a sensible default
    so the engine can start even without the file.
    """

    # -- Timing ------------------------------------------------------
    tick_interval_seconds: float = 10.0
    action_delay_ticks: int = 1

    # -- Production --------------------------------------------------
    rewards_cooldown_ticks: int = 2

    # -- Battle settlement -------------------------------------------
    battle_reward_fraction: float = 0.5
    battle_penalty_fraction: float = 0.25

    # -- Housekeeping ------------------------------------------------
    error_retention_days: int = 7

    # -- Paths -------------------------------------------------------
    db_path: str = "townwars.db"
    static_data_path: str = "config/static_data.yaml"

    # -- Network -----------------------------------------------------
    rest_host: str = "0.0.0.0"
    rest_port: int = 8080


def load_game_config(path: str = DEFAULT_GAME_CONFIG_PATH) -> GameConfig:
    """Load game configuration from a YAML file.

    Missing keys fall back to dataclass defaults.  If the file does not
    exist, a warning is logged and pure defaults are returned.
    """
    p = Path(path)
    if not p.exists():
        log.warning("Game config not found at %s, using defaults", p)
        return GameConfig()

    with p.open() as f:
        raw = yaml.safe_load(f) or {}

    log.info("Loaded game config from %s (%d keys)", p, len(raw))

    unknown = sorted(k for k in raw if k not in GameConfig.__dataclass_fields__)
    if unknown:
        log.warning("Ignoring unknown game config keys: %s", ", ".join(unknown))

    return GameConfig(**{
        k: v for k, v in raw.items()
        if k in GameConfig.__dataclass_fields__
    })
