"""Error service — per-town error log.

Failed actions and per-town tick failures are recorded here so players
and operators can see what went wrong.  Recording never raises.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


class ErrorService:
    """Error sink backed by the ``town_errors`` table.

    Args:
        database: Connected entity store.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def log_town_error(self, address: str, message: str, tick: int) -> None:
        """Record an error for a town. A failing store is logged and ignored."""
        try:
            await self._db.insert_town_error(address, message, tick)
        except Exception:
            log.exception("Failed to log error for town %s: %s", address, message)

    async def get_town_errors(self, address: str, limit: int = 10) -> list[dict]:
        """Most recent errors of a town, newest first."""
        return await self._db.list_town_errors(address, limit)

    async def clear_old_errors(self, days_old: int = 7) -> int:
        """Delete errors older than ``days_old`` days. Returns the count removed."""
        removed = await self._db.delete_town_errors_older_than(days_old)
        if removed:
            log.info("Cleared %d town errors older than %d days", removed, days_old)
        return removed
