"""Tests for the balance tables and their loader.

Checks the shipped config/static_data.yaml for internal consistency and
the loader's rejection of broken tables.
"""

import pytest

from townwars.errors import StaticDataError
from townwars.loaders.static_data_loader import load_static_data, parse_static_data
from townwars.models.static_data import RewardKind


def _minimal() -> dict:
    return {
        "town_levels": {0: {}, 1: {"coin_allocation": 300, "max_troops": 50}},
        "resources": {
            1: {"name": "cannon", "reward_kind": "none",
                "levels": {0: {"cost": 20, "hp": 100}, 1: {"cost": 38, "hp": 140}}},
        },
        "resource_limits": {0: {1: {"count": 2, "max_level": 1}}},
    }


# ── Shipped tables ──────────────────────────────────────────

class TestShippedTables:
    def test_has_level_zero_and_one(self, static_data):
        assert 0 in static_data.town_levels
        assert 1 in static_data.town_levels

    def test_town_levels_are_contiguous(self, static_data):
        levels = sorted(static_data.town_levels)
        assert levels == list(range(levels[-1] + 1))

    def test_town_progression_is_monotone(self, static_data):
        levels = sorted(static_data.town_levels)
        for lower, upper in zip(levels, levels[1:]):
            a = static_data.town_levels[lower]
            b = static_data.town_levels[upper]
            assert b.max_troops >= a.max_troops
            assert b.approved_treasury_balance >= a.approved_treasury_balance
            assert b.hp >= a.hp
            assert b.troop_hp >= a.troop_hp
            assert b.troop_dps >= a.troop_dps

    def test_cooldown_bounds_ordered(self, static_data):
        for stats in static_data.town_levels.values():
            assert stats.cooldown_time_min <= stats.cooldown_time_max

    def test_resource_levels_get_more_expensive(self, static_data):
        for definition in static_data.resources.values():
            levels = sorted(definition.levels)
            assert levels[0] == 0
            for lower, upper in zip(levels, levels[1:]):
                assert definition.levels[upper].cost > definition.levels[lower].cost
                assert definition.levels[upper].hp >= definition.levels[lower].hp

    def test_limits_within_defined_levels(self, static_data):
        for per_type in static_data.limits.values():
            for rtype, limit in per_type.items():
                assert limit.max_level <= static_data.resources[rtype].max_defined_level
                assert limit.count >= 1

    def test_limits_never_shrink_with_town_level(self, static_data):
        levels = sorted(static_data.limits)
        for lower, upper in zip(levels, levels[1:]):
            for rtype, limit in static_data.limits[lower].items():
                higher = static_data.limits[upper][rtype]
                assert higher.count >= limit.count
                assert higher.max_level >= limit.max_level

    def test_reward_kinds(self, static_data):
        kinds = {d.name: d.reward_kind for d in static_data.resources.values()}
        assert kinds == {
            "cannon": RewardKind.NONE,
            "barracks": RewardKind.TROOPS,
            "mine": RewardKind.COINS,
        }

    def test_lookup_helpers(self, static_data):
        assert static_data.resource_name(3) == "mine"
        assert static_data.resource_name(999) == "unknown"
        assert static_data.resource_level(1, 0).cost == 20
        assert static_data.resource_level(1, 99) is None
        assert static_data.limit(0, 1).count == 2
        assert static_data.limit(99, 1) is None
        assert static_data.max_troops(1) == 50
        assert static_data.max_town_level == 3


# ── Loader validation ───────────────────────────────────────

class TestLoaderValidation:
    def test_minimal_table_parses(self):
        data = parse_static_data(_minimal())
        assert data.town_level(1).coin_allocation == 300
        assert data.resource(1).max_defined_level == 1

    def test_missing_level_zero(self):
        raw = _minimal()
        del raw["town_levels"][0]
        del raw["resource_limits"][0]
        with pytest.raises(StaticDataError, match="level 0"):
            parse_static_data(raw)

    def test_resource_without_level_zero(self):
        raw = _minimal()
        del raw["resources"][1]["levels"][0]
        with pytest.raises(StaticDataError, match="no level 0"):
            parse_static_data(raw)

    def test_limit_for_unknown_resource_type(self):
        raw = _minimal()
        raw["resource_limits"][0][7] = {"count": 1, "max_level": 0}
        with pytest.raises(StaticDataError, match="unknown resource type"):
            parse_static_data(raw)

    def test_limit_beyond_defined_levels(self):
        raw = _minimal()
        raw["resource_limits"][0][1]["max_level"] = 5
        with pytest.raises(StaticDataError, match="only 1 is defined"):
            parse_static_data(raw)

    def test_unknown_field_rejected(self):
        raw = _minimal()
        raw["town_levels"][1]["warp_speed"] = 9
        with pytest.raises(StaticDataError, match="unknown fields"):
            parse_static_data(raw)

    def test_bad_reward_kind(self):
        raw = _minimal()
        raw["resources"][1]["reward_kind"] = "gems"
        with pytest.raises(StaticDataError, match="reward_kind"):
            parse_static_data(raw)

    def test_missing_file(self, tmp_path):
        with pytest.raises(StaticDataError, match="not found"):
            load_static_data(tmp_path / "nope.yaml")

    def test_load_from_yaml_file(self, tmp_path):
        path = tmp_path / "static.yaml"
        path.write_text(
            "town_levels:\n"
            "  0: {}\n"
            "resources:\n"
            "  1:\n"
            "    name: mine\n"
            "    reward_kind: coins\n"
            "    levels:\n"
            "      0: {cost: 5, rewards_per_tick: 1}\n"
            "resource_limits:\n"
            "  0:\n"
            "    1: {count: 1, max_level: 0}\n"
        )
        data = load_static_data(path)
        assert data.resource(1).reward_kind == RewardKind.COINS
        assert data.resource_level(1, 0).rewards_per_tick == 1
