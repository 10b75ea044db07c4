"""Static data loader — parses the balance tables from YAML.

Expected layout (config/static_data.yaml)::

    town_levels:
      1: {approved_treasury_balance: 1000, coin_allocation: 300, ...}
    resources:
      1:
        name: cannon
        reward_kind: none
        levels:
          0: {cost: 20, damage_per_tick: 10, hp: 100}
    resource_limits:
      0:
        1: {count: 2, max_level: 2}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from townwars.errors import StaticDataError
from townwars.models.static_data import (
    ResourceDefinition,
    ResourceLevel,
    ResourceLimit,
    RewardKind,
    StaticData,
    TownLevel,
)

log = logging.getLogger(__name__)

DEFAULT_STATIC_DATA_PATH = "config/static_data.yaml"


def _int_keyed(section: Any, what: str) -> dict[int, Any]:
    if not isinstance(section, dict):
        raise StaticDataError(f"{what} must be a mapping")
    try:
        return {int(k): v for k, v in section.items()}
    except (TypeError, ValueError) as exc:
        raise StaticDataError(f"{what} keys must be integers") from exc


def _fields(cls: type, attrs: Any, what: str) -> dict[str, Any]:
    if not isinstance(attrs, dict):
        raise StaticDataError(f"{what} must be a mapping")
    unknown = set(attrs) - set(cls.__dataclass_fields__)
    if unknown:
        raise StaticDataError(f"{what}: unknown fields {sorted(unknown)}")
    return attrs


def _parse_town_levels(section: Any) -> dict[int, TownLevel]:
    levels: dict[int, TownLevel] = {}
    for level, attrs in _int_keyed(section, "town_levels").items():
        attrs = dict(_fields(TownLevel, attrs or {}, f"town level {level}"))
        attrs.pop("level", None)
        levels[level] = TownLevel(level=level, **attrs)
    return levels


def _parse_resources(section: Any) -> dict[int, ResourceDefinition]:
    definitions: dict[int, ResourceDefinition] = {}
    for rtype, attrs in _int_keyed(section, "resources").items():
        if not isinstance(attrs, dict):
            raise StaticDataError(f"resource {rtype} must be a mapping")
        try:
            kind = RewardKind(attrs.get("reward_kind", "none"))
        except ValueError as exc:
            raise StaticDataError(f"resource {rtype}: bad reward_kind") from exc
        levels = {
            lvl: ResourceLevel(**_fields(ResourceLevel, stats or {}, f"resource {rtype} level {lvl}"))
            for lvl, stats in _int_keyed(attrs.get("levels", {}), f"resource {rtype} levels").items()
        }
        definitions[rtype] = ResourceDefinition(
            type=rtype,
            name=attrs.get("name", str(rtype)),
            description=attrs.get("description", ""),
            reward_kind=kind,
            levels=levels,
        )
    return definitions


def _parse_limits(section: Any) -> dict[int, dict[int, ResourceLimit]]:
    limits: dict[int, dict[int, ResourceLimit]] = {}
    for town_level, per_type in _int_keyed(section, "resource_limits").items():
        limits[town_level] = {
            rtype: ResourceLimit(**_fields(ResourceLimit, attrs or {}, f"limit {town_level}/{rtype}"))
            for rtype, attrs in _int_keyed(per_type or {}, f"resource_limits {town_level}").items()
        }
    return limits


def validate_static_data(data: StaticData) -> None:
    """Check cross-table consistency.

    Raises:
        StaticDataError: On the first inconsistency found.
    """
    if 0 not in data.town_levels:
        raise StaticDataError("town_levels must define level 0")
    for rtype, definition in data.resources.items():
        if 0 not in definition.levels:
            raise StaticDataError(f"resource {definition.name} ({rtype}) has no level 0")
    for town_level, per_type in data.limits.items():
        if town_level not in data.town_levels:
            raise StaticDataError(f"resource_limits reference unknown town level {town_level}")
        for rtype, limit in per_type.items():
            definition = data.resources.get(rtype)
            if definition is None:
                raise StaticDataError(f"resource_limits reference unknown resource type {rtype}")
            if limit.max_level > definition.max_defined_level:
                raise StaticDataError(
                    f"limit for {definition.name} at town level {town_level} allows level "
                    f"{limit.max_level} but only {definition.max_defined_level} is defined"
                )
    for level, stats in data.town_levels.items():
        if stats.cooldown_time_max < stats.cooldown_time_min:
            raise StaticDataError(f"town level {level}: cooldown_time_max < cooldown_time_min")


def parse_static_data(raw: dict[str, Any]) -> StaticData:
    """Build and validate a StaticData from an already-parsed YAML mapping."""
    data = StaticData(
        town_levels=_parse_town_levels(raw.get("town_levels", {})),
        resources=_parse_resources(raw.get("resources", {})),
        limits=_parse_limits(raw.get("resource_limits", {})),
    )
    validate_static_data(data)
    return data


def load_static_data(path: str | Path = DEFAULT_STATIC_DATA_PATH) -> StaticData:
    """Load the balance tables from a YAML file.

    Raises:
        StaticDataError: If the file is missing or inconsistent.
    """
    p = Path(path)
    if not p.exists():
        raise StaticDataError(f"Static data not found at {p}")

    with p.open() as f:
        raw = yaml.safe_load(f) or {}

    data = parse_static_data(raw)
    log.info(
        "Loaded static data from %s (%d town levels, %d resource types)",
        p, len(data.town_levels), len(data.resources),
    )
    return data
