"""Buff service — shield/boost lifecycle and expiry cleanup.

Responsibilities:
- Classify a buff as ACTIVE, COOLDOWN or EXPIRED at a tick
- Look up the current shield / boost of a town
- Create buffs from a town level's duration and cooldown
- Delete everything whose cooldown has ended (shields, boosts, battles)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from townwars.models.buff import Buff, BuffKind, BuffStatus

if TYPE_CHECKING:
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


def buff_status(buff: Buff, tick: int) -> BuffStatus:
    """Phase of ``buff`` at ``tick``."""
    return buff.status(tick)


class BuffService:
    """Service for timed shields and boosts.

    Args:
        database: Connected entity store.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def current_shield(self, address: str, tick: int) -> Optional[Buff]:
        """The town's shield if it is still ACTIVE or COOLDOWN at ``tick``."""
        return await self._db.get_current_buff(BuffKind.SHIELD, address, tick)

    async def current_boost(self, address: str, tick: int) -> Optional[Buff]:
        """The town's boost if it is still ACTIVE or COOLDOWN at ``tick``."""
        return await self._db.get_current_buff(BuffKind.BOOST, address, tick)

    async def current_buff(self, kind: BuffKind, address: str, tick: int) -> Optional[Buff]:
        return await self._db.get_current_buff(kind, address, tick)

    async def create_buff(
        self, kind: BuffKind, address: str, tick: int, duration: int, cooldown: int,
    ) -> Buff:
        """Store a buff active for ``duration`` ticks, then cooling down for ``cooldown``."""
        end = tick + duration
        buff = await self._db.insert_buff(kind, address, tick, end, end + cooldown)
        log.info(
            "%s for %s: active until %d, cooldown until %d",
            kind.value.capitalize(), address, buff.end, buff.cooldown_end,
        )
        return buff

    async def replace_shield(self, address: str, tick: int, duration: int, cooldown: int) -> Buff:
        """Drop every shield of the town and store a fresh one."""
        await self._db.delete_town_buffs(BuffKind.SHIELD, address)
        return await self.create_buff(BuffKind.SHIELD, address, tick, duration, cooldown)

    async def cleanup_expired(self, tick: int) -> int:
        """Delete every shield, boost and battle with ``cooldown_end <= tick``.

        Returns:
            Total number of rows removed.
        """
        shields = await self._db.delete_expired_buffs(BuffKind.SHIELD, tick)
        boosts = await self._db.delete_expired_buffs(BuffKind.BOOST, tick)
        battles = await self._db.delete_expired_battles(tick)
        total = shields + boosts + battles
        if total:
            log.info(
                "Cleanup at tick %d: %d shields, %d boosts, %d battles expired",
                tick, shields, boosts, battles,
            )
        return total
