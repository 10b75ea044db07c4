"""Battle service — attack initiation, closed-form combat and settlement.

A battle's outcome is computed once, when the attack is launched:

  round loop (at most ``attack_duration`` rounds):
    1. defender structures hit the troops   — troops wiped → failure, 0%
    2. troops hit the defender structures   — structures razed → success, 100%
  rounds exhausted → partial success, percentage of structure HP destroyed

The treasury settlement is deferred to the battle's end tick and only
performed from the attacker's side, so it happens exactly once.

``calculate_battle`` is pure and deterministic for testing.
"""

from __future__ import annotations

import logging
import math
import random
import uuid
from typing import TYPE_CHECKING, Iterable, Optional

from townwars.models.actions import Action, ActionResult, ActionType, BattlePayload
from townwars.models.battle import Battle, BattleOutcome
from townwars.util.format import format_dollars

if TYPE_CHECKING:
    from townwars.engine.action_queue import ActionQueue
    from townwars.engine.buff_service import BuffService
    from townwars.engine.error_service import ErrorService
    from townwars.engine.town_service import TownService
    from townwars.models.static_data import ResourceLevel, StaticData, TownLevel
    from townwars.models.town import Town
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


# ── Pure combat math ────────────────────────────────────────

def calculate_battle(
    troops: int,
    town_level: TownLevel,
    defender_resources: Iterable[ResourceLevel],
) -> BattleOutcome:
    """Simulate the fight between an attacker's troops and the defender's structures.

    Args:
        troops: Attacking troop count.
        town_level: Attacker's level stats (troop HP/DPS, attack duration).
        defender_resources: Level stats of every resource the defender owns.
    """
    attacker_hp = troops * town_level.troop_hp
    attacker_dps = troops * town_level.troop_dps

    defender_hp = 0
    defender_dps = 0
    for stats in defender_resources:
        defender_hp += stats.hp
        defender_dps += stats.damage_per_tick
    initial_hp = defender_hp

    for round_no in range(1, town_level.attack_duration + 1):
        attacker_hp -= defender_dps
        if attacker_hp <= 0:
            return BattleOutcome(success=False, percentage=0, rounds=round_no)
        defender_hp -= attacker_dps
        if defender_hp <= 0:
            return BattleOutcome(success=True, percentage=100, rounds=round_no)

    if initial_hp <= 0:
        return BattleOutcome(success=True, percentage=100, rounds=town_level.attack_duration)

    # round(100 * taken / initial), halves rounded up
    taken = initial_hp - defender_hp
    percentage = (200 * taken + initial_hp) // (2 * initial_hp)
    return BattleOutcome(success=True, percentage=percentage, rounds=town_level.attack_duration)


def reward_and_penalty(
    attacker: Town,
    defender: Town,
    reward_fraction: float = 0.5,
    penalty_fraction: float = 0.25,
) -> tuple[int, int]:
    """What the attacker stands to win (from the defender) and to lose (from itself)."""
    reward = math.floor(defender.treasury * reward_fraction)
    penalty = math.floor(attacker.treasury * penalty_fraction)
    return reward, penalty


# ── Service ─────────────────────────────────────────────────

class BattleService:
    """Launches and settles battles between towns.

    Args:
        database: Connected entity store.
        static_data: Balance tables.
        towns: Town service.
        buffs: Buff service (shield checks).
        queue: Action queue (battle actions are removed through it).
        errors: Error sink for failed attacks.
        rng: Random source for the post-battle cooldown roll.
        reward_fraction: Share of the defender's treasury at stake.
        penalty_fraction: Share of the attacker's treasury at stake.
    """

    def __init__(
        self,
        database: Database,
        static_data: StaticData,
        towns: TownService,
        buffs: BuffService,
        queue: ActionQueue,
        errors: ErrorService,
        rng: random.Random | None = None,
        reward_fraction: float = 0.5,
        penalty_fraction: float = 0.25,
    ) -> None:
        self._db = database
        self._static = static_data
        self._towns = towns
        self._buffs = buffs
        self._queue = queue
        self._errors = errors
        self._rng = rng or random.Random()
        self._reward_fraction = reward_fraction
        self._penalty_fraction = penalty_fraction

    # -- Queries ---------------------------------------------------------

    async def can_be_attacked(self, address: str, tick: int) -> bool:
        """False while the town has an active shield or any unexpired battle."""
        shield = await self._buffs.current_shield(address, tick)
        if shield is not None and shield.is_active(tick):
            return False
        battle = await self._db.get_current_battle(address, tick)
        return battle is None

    async def battles_ending_at(self, attacker_address: str, tick: int) -> list[Battle]:
        return await self._db.list_battles_ending(attacker_address, tick)

    async def validate_attack(self, attacker: Town, target_address: str) -> Optional[str]:
        """Checks that do not depend on the target's shield or battle state.

        Returns:
            An error message, or None if the attack may be queued.
        """
        if target_address == attacker.address:
            return "You cannot attack yourself"
        target = await self._db.get_town(target_address)
        if target is None:
            return f"Target town not found: {target_address}"
        stats = self._static.town_level(attacker.level)
        cost = stats.attack_cost if stats else 0
        if stats is None or attacker.coins < cost:
            return f"Not enough coins to attack (need {cost}, have {attacker.coins})"
        if attacker.troops <= 0:
            return "You need troops to attack"
        return None

    # -- Initiation ------------------------------------------------------

    async def initiate_battle(
        self, attacker_address: str, target_address: str, tick: int,
    ) -> tuple[Optional[Battle], ActionResult]:
        """Validate and launch an attack.

        On success the battle is stored with its outcome already computed,
        the attack cost is debited and the attacker's troops are spent.
        """
        attacker = await self._towns.require_town(attacker_address)
        problem = await self.validate_attack(attacker, target_address)
        if problem is not None:
            return None, ActionResult.fail(problem)
        if not await self.can_be_attacked(target_address, tick):
            return None, ActionResult.fail("Target is shielded or recovering from a battle")

        defender = await self._towns.require_town(target_address)
        stats = self._static.town_level(attacker.level)
        if stats is None:
            raise ValueError(f"Invalid town level: {attacker.level}")

        defender_stats = []
        for resource in await self._db.list_town_resources(defender.address):
            level_stats = self._static.resource_level(resource.type, resource.level)
            if level_stats is None:
                raise ValueError(
                    f"Unknown level {resource.level} for resource type {resource.type}"
                )
            defender_stats.append(level_stats)

        outcome = calculate_battle(attacker.troops, stats, defender_stats)
        reward, penalty = reward_and_penalty(
            attacker, defender, self._reward_fraction, self._penalty_fraction,
        )

        end = tick + stats.attack_duration
        cooldown = self._rng.randint(stats.cooldown_time_min, stats.cooldown_time_max)
        battle = Battle(
            id=uuid.uuid4().hex,
            attacker_address=attacker.address,
            defender_address=defender.address,
            start=tick,
            end=end,
            cooldown_end=end + cooldown,
            reward=reward,
            penalty=penalty,
            success=outcome.success,
            percentage=outcome.percentage,
        )
        await self._db.insert_battle(battle)
        await self._towns.update_town(
            attacker.address, troops=0, coins=attacker.coins - stats.attack_cost,
        )

        log.info(
            "Battle %s: %s -> %s, %d troops, success=%s %d%%, ends at %d",
            battle.id, attacker.address, defender.address, attacker.troops,
            battle.success, battle.percentage, battle.end,
        )
        return battle, ActionResult(
            success=True,
            message=f"Attacked {defender.name} with {attacker.troops} troops",
            channel_message=f"⚔️ Your {attacker.troops} troops are attacking {defender.name}!",
            feed_message=f"⚔️ {attacker.name} attacked {defender.name}!",
        )

    async def execute_battle_actions(
        self, address: str, actions: list[Action], tick: int,
    ) -> list[ActionResult]:
        """Launch every queued Battle action of a town, removing each one."""
        results: list[ActionResult] = []
        for action in actions:
            if action.type != ActionType.BATTLE:
                continue
            try:
                payload = action.payload
                if not isinstance(payload, BattlePayload):
                    raise ValueError(f"Expected a Battle payload, got {payload!r}")
                async with self._db.transaction():
                    _, result = await self.initiate_battle(address, payload.target_address, tick)
            except Exception as exc:
                message = f"Action {action.type.label} failed: {exc}"
                log.warning("%s (town %s, tick %d)", message, address, tick)
                result = ActionResult.fail(message)
            finally:
                await self._queue.remove(action.id)

            if not result.success:
                log.warning("Battle for %s: %s", address, result.message)
                await self._errors.log_town_error(address, result.message, tick)
            results.append(result)
        return results

    # -- Resolution ------------------------------------------------------

    async def resolve_battle(self, battle: Battle) -> ActionResult:
        """Settle the treasuries of both towns in one transaction."""
        attacker = await self._towns.get_town(battle.attacker_address)
        defender = await self._towns.get_town(battle.defender_address)
        attacker_name = attacker.name if attacker else battle.attacker_address
        defender_name = defender.name if defender else battle.defender_address

        if battle.success:
            amount = battle.actual_reward
            await self._db.transfer_treasury(
                battle.defender_address, battle.attacker_address, amount, amount,
            )
            text = (
                f"🏆 {attacker_name} defeated {defender_name} "
                f"({battle.percentage}% destroyed) and looted {format_dollars(amount)}"
            )
        else:
            amount = battle.penalty
            await self._db.transfer_treasury(
                battle.attacker_address, battle.defender_address, amount, amount,
            )
            text = (
                f"🛡️ {defender_name} repelled {attacker_name} "
                f"and claimed {format_dollars(amount)}"
            )

        log.info("Battle %s resolved: success=%s amount=%d", battle.id, battle.success, amount)
        return ActionResult(success=True, message=text, feed_message=text)

    async def resolve_battles(self, attacker_address: str, tick: int) -> list[ActionResult]:
        """Settle every battle the town started that ends exactly at ``tick``."""
        results = []
        for battle in await self.battles_ending_at(attacker_address, tick):
            results.append(await self.resolve_battle(battle))
        return results
