"""Town model — a player's persistent game entity.

A Town holds the player's level, spendable coins, troop pool and the
treasury that is put at risk in battles.  Resources, buffs, battles and
queued actions reference the town by address.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Town:
    """Persistent state of a player's town.

    Attributes:
        address: Unique owner key.
        channel_id: Channel that receives this town's messages.
        name: Display name.
        level: Current town level.
        requested_level: Pending upgrade target (``>= level``).
        leveled_up_at: Tick of the last level change.
        coins: Spendable currency.
        troops: Troop pool, capped by the level's max troops.
        treasury: Currency at stake in battles, in cents.
        last_processed_tick: Last tick whose per-town pass finished.
    """

    address: str
    channel_id: str = ""
    name: str = ""
    level: int = 0
    requested_level: int = 1
    leveled_up_at: int = 0
    coins: int = 0
    troops: int = 0
    treasury: int = 0
    last_processed_tick: int = 0

    @property
    def has_pending_level_up(self) -> bool:
        return self.requested_level > self.level

    def is_celebrating(self, tick: int) -> bool:
        """True during the single tick in which the town levelled up."""
        return self.leveled_up_at == tick and self.level > 0
