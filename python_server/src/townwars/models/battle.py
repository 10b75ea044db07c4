"""Battle model — a computed combat encounter between two towns.

The outcome is fixed when the battle is created.  Only the treasury
settlement is deferred until the battle's end tick.
Business logic is in engine/battle_service.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BattlePhase(Enum):
    """Phases of a battle.

    PENDING only exists as a queued Battle action; a stored Battle is
    always in one of the later phases.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUMMARY = "summary"
    COOLDOWN = "cooldown"
    EXPIRED = "expired"


@dataclass(frozen=True)
class BattleOutcome:
    """Result of the closed-form combat simulation.

    Attributes:
        success: Whether the attacker won (fully or partially).
        percentage: Share of the defender's structure HP destroyed, 0-100.
        rounds: Rounds simulated before the fight ended.
    """

    success: bool
    percentage: int
    rounds: int = 0


@dataclass
class Battle:
    """Stored battle record.

    Attributes:
        id: Unique battle id.
        attacker_address: Attacking town.
        defender_address: Defending town.
        start: Tick the attack was launched.
        end: Tick the treasury settlement happens.
        cooldown_end: Tick the post-battle grace period ends.
        reward: Potential gain (cents), fixed at creation.
        penalty: Potential loss (cents), fixed at creation.
        success: Whether the attacker won.
        percentage: Damage dealt to the defender, 0-100.
    """

    id: str
    attacker_address: str
    defender_address: str
    start: int
    end: int
    cooldown_end: int
    reward: int = 0
    penalty: int = 0
    success: bool = False
    percentage: int = 0

    def phase(self, tick: int) -> BattlePhase:
        if tick < self.end:
            return BattlePhase.IN_PROGRESS
        if tick == self.end:
            return BattlePhase.SUMMARY
        if tick < self.cooldown_end:
            return BattlePhase.COOLDOWN
        return BattlePhase.EXPIRED

    @property
    def actual_reward(self) -> int:
        """Reward scaled by the damage dealt (what a successful attacker receives)."""
        return (self.reward * self.percentage) // 100
