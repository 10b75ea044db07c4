"""Game clock — the persisted global tick counter.

The clock only moves forward.  ``completed_tick`` records the last tick
whose batch finished, so an interrupted run can be resumed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


class GameClock:
    """Discrete tick counter backed by the ``game_state`` row.

    Args:
        database: Connected entity store.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def current_tick(self) -> int:
        current, _ = await self._db.get_game_state()
        return current

    async def completed_tick(self) -> int:
        _, completed = await self._db.get_game_state()
        return completed

    async def advance(self) -> int:
        """Increment the tick by exactly one and return the new value."""
        tick = await self._db.increment_tick()
        log.info("Advanced to tick %d", tick)
        return tick

    async def mark_completed(self, tick: int) -> None:
        await self._db.set_completed_tick(tick)
