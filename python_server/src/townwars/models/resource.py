"""Resource instance model — a building owned by a town."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Resource:
    """A purchased building.

    Attributes:
        id: Unique resource id.
        town_address: Owning town.
        type: Resource definition key (see StaticData.resources).
        level: Current level of this instance.
        acquired_at: Tick of purchase.
        collected_at: Tick of the last collection (starts at acquired_at).
        rewards_bank: Accrued, not yet collected reward units.
    """

    id: str
    town_address: str
    type: int
    level: int = 0
    acquired_at: int = 0
    collected_at: int = 0
    rewards_bank: int = 0
