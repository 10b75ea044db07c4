"""Town service — town lifecycle and balance arithmetic.

Responsibilities:
- Engage (create) and quit (delete, cascading) towns
- Coin and troop credits, troops capped by the level's max troops
- Level-up: level, treasury grant, coin allocation, celebration tick
- Tips converted to coins
- ``TownState`` snapshots for status displays and the admin API

Balance rules come from StaticData; this module never decides whether
an action is allowed, that is the action executor's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from townwars.errors import GameError, TownNotFound
from townwars.models.battle import Battle, BattlePhase
from townwars.models.buff import Buff, BuffKind, BuffStatus
from townwars.models.resource import Resource
from townwars.models.town import Town
from townwars.util.format import tip_to_coins

if TYPE_CHECKING:
    from townwars.models.static_data import StaticData
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


@dataclass
class TownState:
    """A town together with everything shown on its status screen."""

    town: Town
    resources: list[Resource] = field(default_factory=list)
    battle: Optional[Battle] = None
    shield: Optional[Buff] = None
    boost: Optional[Buff] = None
    battle_active: bool = False
    battle_summary: bool = False
    battle_cooldown: bool = False
    shield_active: bool = False
    shield_cooldown: bool = False
    boost_active: bool = False
    boost_cooldown: bool = False
    celebrating: bool = False
    boost_multiplier: float = 1.0


class TownService:
    """Service for town persistence and arithmetic.

    Args:
        database: Connected entity store.
        static_data: Balance tables.
    """

    def __init__(self, database: Database, static_data: StaticData) -> None:
        self._db = database
        self._static = static_data

    # -- Lookup ----------------------------------------------------------

    async def get_town(self, address: str) -> Optional[Town]:
        return await self._db.get_town(address)

    async def require_town(self, address: str) -> Town:
        """Like get_town but raises TownNotFound."""
        town = await self._db.get_town(address)
        if town is None:
            raise TownNotFound(address)
        return town

    async def list_towns(self) -> list[Town]:
        return await self._db.list_towns()

    # -- Lifecycle -------------------------------------------------------

    async def create_town(self, address: str, channel_id: str, name: str, tick: int) -> Town:
        """Create a level-0 town that has already requested level 1.

        The starting coins are level 1's coin allocation.
        """
        first = self._static.town_level(1)
        town = Town(
            address=address,
            channel_id=channel_id,
            name=name or "Unknown",
            level=0,
            requested_level=1,
            leveled_up_at=tick,
            coins=first.coin_allocation if first else 0,
            troops=0,
            treasury=0,
            last_processed_tick=0,
        )
        return await self._db.insert_town(town)

    async def get_or_create_town(
        self, address: str, channel_id: str, name: str, tick: int,
    ) -> tuple[Town, bool]:
        """Return ``(town, is_new)``."""
        existing = await self._db.get_town(address)
        if existing is not None:
            return existing, False
        return await self.create_town(address, channel_id, name, tick), True

    async def update_town(self, address: str, **fields: Any) -> Town:
        town = await self._db.update_town(address, **fields)
        if town is None:
            raise TownNotFound(address)
        return town

    async def delete_town(self, address: str) -> bool:
        """Remove a town with all its resources, buffs, battles, actions and errors."""
        return await self._db.delete_town(address)

    # -- Balances --------------------------------------------------------

    async def add_coins(self, address: str, amount: int) -> Town:
        town = await self._db.add_town_counters(address, coins=amount)
        if town is None:
            raise TownNotFound(address)
        return town

    async def add_troops(self, address: str, amount: int) -> tuple[Town, int]:
        """Credit troops up to the level cap.

        Returns:
            ``(town, added)`` where ``added`` is the number actually applied.
            Overflow beyond the cap is discarded.
        """
        town = await self.require_town(address)
        cap = self._static.max_troops(town.level)
        new_troops = max(town.troops, min(town.troops + amount, cap))
        added = new_troops - town.troops
        if added:
            town = await self.update_town(address, troops=new_troops)
        return town, added

    async def level_up(self, address: str, tick: int) -> Town:
        """Apply a pending level-up request.

        Raises:
            TownNotFound: If the town does not exist.
            GameError: If no level-up is pending or the target level is undefined.
        """
        town = await self.require_town(address)
        if not town.has_pending_level_up:
            raise GameError(f"No level up pending for town: {address}")

        new_level = town.requested_level
        stats = self._static.town_level(new_level)
        if stats is None:
            raise GameError(f"Invalid level: {new_level}")

        town = await self.update_town(
            address,
            level=new_level,
            requested_level=new_level,
            leveled_up_at=tick,
            treasury=town.treasury + stats.approved_treasury_balance,
            coins=town.coins + stats.coin_allocation,
        )
        log.info("Town %s levelled up to %d at tick %d", address, new_level, tick)
        return town

    async def add_tip(self, address: str, eth_amount: float) -> tuple[Town, int]:
        """Credit coins for a tip. Returns ``(town, coins_added)``."""
        coins = tip_to_coins(eth_amount)
        town = await self.add_coins(address, coins)
        log.info("Tip of %.6f ETH for %s: +%d coins", eth_amount, address, coins)
        return town, coins

    # -- Snapshot --------------------------------------------------------

    async def town_state(self, town: Town, tick: int) -> TownState:
        """Collect a town's resources, battle and buffs with their phase flags."""
        resources = await self._db.list_town_resources(town.address)
        battle = await self._db.get_current_battle(town.address, tick)
        shield = await self._db.get_current_buff(BuffKind.SHIELD, town.address, tick)
        boost = await self._db.get_current_buff(BuffKind.BOOST, town.address, tick)

        battle_phase = battle.phase(tick) if battle else None
        shield_status = shield.status(tick) if shield else None
        boost_status = boost.status(tick) if boost else None
        boost_active = boost_status == BuffStatus.ACTIVE

        multiplier = 1.0
        if boost_active:
            stats = self._static.town_level(town.level)
            multiplier = stats.boost_multiplier if stats else 1.0

        return TownState(
            town=town,
            resources=resources,
            battle=battle,
            shield=shield,
            boost=boost,
            battle_active=battle_phase == BattlePhase.IN_PROGRESS,
            battle_summary=battle_phase == BattlePhase.SUMMARY,
            battle_cooldown=battle_phase == BattlePhase.COOLDOWN,
            shield_active=shield_status == BuffStatus.ACTIVE,
            shield_cooldown=shield_status == BuffStatus.COOLDOWN,
            boost_active=boost_active,
            boost_cooldown=boost_status == BuffStatus.COOLDOWN,
            celebrating=town.is_celebrating(tick),
            boost_multiplier=multiplier,
        )
