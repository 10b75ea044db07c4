"""Action queue — persisted per-town player intents.

Actions are scheduled for a specific tick (normally the next one) and
are removed in the tick they execute, whatever the outcome.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from townwars.models.actions import (
    Action,
    ActionType,
    BattlePayload,
    BuyResourcePayload,
    NoPayload,
    Payload,
    ResourcePayload,
)

if TYPE_CHECKING:
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


class ActionQueue:
    """Persisted action queue.

    Args:
        database: Connected entity store.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def enqueue(self, address: str, tick: int, action_type: ActionType,
                      payload: Payload | None = None) -> Action:
        action = await self._db.insert_action(address, tick, action_type, payload or NoPayload())
        log.debug("Queued %s for %s at tick %d", action_type.label, address, tick)
        return action

    async def dequeue(self, address: str, tick: int) -> list[Action]:
        """Actions of a town scheduled exactly at ``tick``, in queue order.

        Nothing is removed here; the executor removes each action once handled.
        """
        return await self._db.list_actions_at(address, tick)

    async def remove(self, action_id: str) -> bool:
        return await self._db.delete_action(action_id)

    async def actions_for_town(self, address: str) -> list[Action]:
        return await self._db.list_town_actions(address)

    async def has_pending_level_up_request(self, address: str) -> bool:
        return await self._db.has_action_of_type(address, ActionType.LEVEL_UP_REQUEST)

    # -- Typed helpers ---------------------------------------------------

    async def queue_buy_resource(self, address: str, tick: int, resource_type: int) -> Action:
        return await self.enqueue(address, tick, ActionType.BUY_RESOURCE,
                                  BuyResourcePayload(resource_type=resource_type))

    async def queue_upgrade_resource(self, address: str, tick: int, resource_id: str) -> Action:
        return await self.enqueue(address, tick, ActionType.UPGRADE_RESOURCE,
                                  ResourcePayload(resource_id=resource_id))

    async def queue_collect(self, address: str, tick: int, resource_id: str) -> Action:
        return await self.enqueue(address, tick, ActionType.COLLECT,
                                  ResourcePayload(resource_id=resource_id))

    async def queue_boost(self, address: str, tick: int) -> Action:
        return await self.enqueue(address, tick, ActionType.BOOST)

    async def queue_shield(self, address: str, tick: int) -> Action:
        return await self.enqueue(address, tick, ActionType.SHIELD)

    async def queue_level_up_request(self, address: str, tick: int) -> Action:
        return await self.enqueue(address, tick, ActionType.LEVEL_UP_REQUEST)

    async def queue_level_up_approval(self, address: str, tick: int) -> Action:
        return await self.enqueue(address, tick, ActionType.LEVEL_UP_APPROVAL)

    async def queue_level_up_cancel(self, address: str, tick: int) -> Action:
        return await self.enqueue(address, tick, ActionType.LEVEL_UP_CANCEL)

    async def queue_battle(self, address: str, tick: int, target_address: str) -> Action:
        return await self.enqueue(address, tick, ActionType.BATTLE,
                                  BattlePayload(target_address=target_address))
