"""Buff models — timed shields and boosts.

A buff goes through three phases derived from its timestamps:
  ACTIVE [start, end) → COOLDOWN [end, cooldown_end) → EXPIRED
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BuffKind(Enum):
    """The two buff tables."""

    SHIELD = "shield"
    BOOST = "boost"


class BuffStatus(Enum):
    """Phase of a buff relative to a tick."""

    ACTIVE = "active"
    COOLDOWN = "cooldown"
    EXPIRED = "expired"


@dataclass
class Buff:
    """A shield or boost owned by a town.

    Attributes:
        id: Unique buff id.
        kind: Shield or boost.
        town_address: Owning town.
        start: First active tick (inclusive).
        end: First tick after the active window.
        cooldown_end: First tick at which the buff is expired.
    """

    id: str
    kind: BuffKind
    town_address: str
    start: int
    end: int
    cooldown_end: int

    def status(self, tick: int) -> BuffStatus:
        if tick < self.end:
            return BuffStatus.ACTIVE
        if tick < self.cooldown_end:
            return BuffStatus.COOLDOWN
        return BuffStatus.EXPIRED

    def is_active(self, tick: int) -> bool:
        return self.status(tick) == BuffStatus.ACTIVE

    def blocks_purchase(self, tick: int) -> bool:
        """A buff still active or cooling down blocks buying another of its kind."""
        return self.status(tick) != BuffStatus.EXPIRED
