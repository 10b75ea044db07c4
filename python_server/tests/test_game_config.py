"""Tests for the game config loader."""

import logging
from pathlib import Path

from townwars.loaders.game_config_loader import GameConfig, load_game_config

SHIPPED_CONFIG = Path(__file__).resolve().parents[2] / "config" / "game.yaml"


def test_missing_file_gives_defaults(tmp_path, caplog):
    with caplog.at_level(logging.WARNING):
        cfg = load_game_config(str(tmp_path / "missing.yaml"))
    assert cfg == GameConfig()
    assert "using defaults" in caplog.text


def test_partial_file_keeps_defaults(tmp_path):
    path = tmp_path / "game.yaml"
    path.write_text("tick_interval_seconds: 2.5\nrest_port: 9090\n")
    cfg = load_game_config(str(path))
    assert cfg.tick_interval_seconds == 2.5
    assert cfg.rest_port == 9090
    assert cfg.rewards_cooldown_ticks == 2
    assert cfg.battle_reward_fraction == 0.5


def test_unknown_keys_ignored(tmp_path, caplog):
    path = tmp_path / "game.yaml"
    path.write_text("action_delay_ticks: 2\nturbo_mode: true\n")
    with caplog.at_level(logging.WARNING):
        cfg = load_game_config(str(path))
    assert cfg.action_delay_ticks == 2
    assert not hasattr(cfg, "turbo_mode")
    assert "turbo_mode" in caplog.text


def test_empty_file(tmp_path):
    path = tmp_path / "game.yaml"
    path.write_text("")
    assert load_game_config(str(path)) == GameConfig()


def test_shipped_config_loads():
    cfg = load_game_config(str(SHIPPED_CONFIG))
    assert cfg.tick_interval_seconds > 0
    assert cfg.action_delay_ticks >= 1
    assert 0 < cfg.battle_penalty_fraction <= 1
    assert 0 < cfg.battle_reward_fraction <= 1
