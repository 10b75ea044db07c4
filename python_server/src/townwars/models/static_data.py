"""Static game data models.

Defines the balance tables: town levels, resource definitions and the
per-town-level resource limits.  Loaded from config/static_data.yaml via
the static_data_loader and read-only afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RewardKind(Enum):
    """What a resource produces into its rewards bank."""

    NONE = "none"
    COINS = "coins"
    TROOPS = "troops"


@dataclass(frozen=True)
class TownLevel:
    """Stats of a town at one level.

    Attributes:
        level: Town level this row describes.
        approved_treasury_balance: Treasury grant (cents) applied on level-up.
        coin_allocation: Coins credited on level-up.
        boost_cost: Coins to buy a boost.
        boost_multiplier: Production multiplier advertised by a boost.
        boost_duration: Active boost window in ticks.
        boost_cooldown: Boost cooldown window in ticks.
        shield_cost: Coins to buy a shield.
        shield_duration: Active shield window in ticks.
        shield_cooldown: Shield cooldown window in ticks.
        cooldown_time_min: Lower bound of the post-battle cooldown roll.
        cooldown_time_max: Upper bound of the post-battle cooldown roll.
        hp: Town hall hit points.
        attack_cost: Coins to launch an attack.
        attack_duration: Number of ticks (combat rounds) an attack lasts.
        troop_hp: Hit points per troop.
        troop_dps: Damage per round per troop.
        max_troops: Troop cap.
    """

    level: int = 0
    approved_treasury_balance: int = 0
    coin_allocation: int = 0
    boost_cost: int = 0
    boost_multiplier: float = 1.0
    boost_duration: int = 0
    boost_cooldown: int = 0
    shield_cost: int = 0
    shield_duration: int = 0
    shield_cooldown: int = 0
    cooldown_time_min: int = 0
    cooldown_time_max: int = 0
    hp: int = 0
    attack_cost: int = 0
    attack_duration: int = 0
    troop_hp: int = 0
    troop_dps: int = 0
    max_troops: int = 0


@dataclass(frozen=True)
class ResourceLevel:
    """Stats of a resource instance at one level.

    Attributes:
        cost: Coins to reach this level (level 0: purchase price).
        damage_per_tick: Damage dealt per combat round when defending.
        rewards_per_tick: Units added to the rewards bank per tick.
        max_rewards: Bank cap (0 = uncapped, informational).
        hp: Structure hit points when defending.
    """

    cost: int = 0
    damage_per_tick: int = 0
    rewards_per_tick: int = 0
    max_rewards: int = 0
    hp: int = 0


@dataclass(frozen=True)
class ResourceDefinition:
    """A buildable resource type (cannon, barracks, mine, ...)."""

    type: int
    name: str
    description: str = ""
    reward_kind: RewardKind = RewardKind.NONE
    levels: dict[int, ResourceLevel] = field(default_factory=dict)

    @property
    def max_defined_level(self) -> int:
        return max(self.levels) if self.levels else -1


@dataclass(frozen=True)
class ResourceLimit:
    """How many instances of a type a town may own, and how far it may level them."""

    count: int
    max_level: int


class StaticData:
    """Balance table database — read-only after initialization.

    Attributes:
        town_levels: Town level stats keyed by level.
        resources: Resource definitions keyed by type id.
        limits: Resource limits keyed by town level, then resource type.
    """

    def __init__(
        self,
        town_levels: dict[int, TownLevel],
        resources: dict[int, ResourceDefinition],
        limits: dict[int, dict[int, ResourceLimit]],
    ) -> None:
        self.town_levels = town_levels
        self.resources = resources
        self.limits = limits

    def town_level(self, level: int) -> Optional[TownLevel]:
        """Look up the stats for a town level."""
        return self.town_levels.get(level)

    def resource(self, resource_type: int) -> Optional[ResourceDefinition]:
        """Look up a resource definition by type id."""
        return self.resources.get(resource_type)

    def resource_level(self, resource_type: int, level: int) -> Optional[ResourceLevel]:
        """Look up the stats of a resource type at a given level."""
        definition = self.resources.get(resource_type)
        if definition is None:
            return None
        return definition.levels.get(level)

    def limit(self, town_level: int, resource_type: int) -> Optional[ResourceLimit]:
        """Return the limit for a resource type at a town level, if available."""
        return self.limits.get(town_level, {}).get(resource_type)

    def max_troops(self, town_level: int) -> int:
        stats = self.town_levels.get(town_level)
        return stats.max_troops if stats else 0

    def resource_name(self, resource_type: int) -> str:
        definition = self.resources.get(resource_type)
        return definition.name if definition else "unknown"

    @property
    def max_town_level(self) -> int:
        return max(self.town_levels) if self.town_levels else 0
