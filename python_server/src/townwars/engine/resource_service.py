"""Resource service — production accrual and reward collection.

A resource adds its level's ``rewards_per_tick`` to its bank once per
tick, except during the cooldown right after a collection.  Skipped
ticks are never back-filled.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from townwars.errors import ResourceNotFound
from townwars.models.static_data import RewardKind

if TYPE_CHECKING:
    from townwars.models.resource import Resource
    from townwars.models.static_data import StaticData
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


class ResourceService:
    """Service for resource production.

    Args:
        database: Connected entity store.
        static_data: Balance tables.
        rewards_cooldown_ticks: Ticks after a collection during which nothing accrues.
    """

    def __init__(self, database: Database, static_data: StaticData,
                 rewards_cooldown_ticks: int = 2) -> None:
        self._db = database
        self._static = static_data
        self._cooldown = rewards_cooldown_ticks

    async def accrue(self, resource: Resource, tick: int) -> int:
        """Add one tick of production to the resource's bank.

        Returns:
            The amount added (0 while cooling down or for non-producers).
        """
        if tick <= resource.collected_at + self._cooldown:
            return 0

        stats = self._static.resource_level(resource.type, resource.level)
        if stats is None:
            log.error("Unknown level %d for resource type %d", resource.level, resource.type)
            return 0

        amount = stats.rewards_per_tick
        if amount > 0:
            await self._db.add_resource_rewards(resource.id, amount)
            resource.rewards_bank += amount
        return amount

    async def accrue_town(self, address: str, tick: int) -> int:
        """Accrue every resource of a town. Returns the total added."""
        total = 0
        for resource in await self._db.list_town_resources(address):
            total += await self.accrue(resource, tick)
        return total

    async def collect(self, resource_id: str, tick: int) -> tuple[int, RewardKind]:
        """Empty a resource's bank and restart its cooldown.

        Returns:
            ``(amount, reward_kind)``: the bank content before collection and
            what it is worth.

        Raises:
            ResourceNotFound: If no resource has this id.
        """
        resource = await self._db.take_resource_rewards(resource_id, tick)
        if resource is None:
            raise ResourceNotFound(resource_id)
        definition = self._static.resource(resource.type)
        kind = definition.reward_kind if definition else RewardKind.NONE
        return resource.rewards_bank, kind
