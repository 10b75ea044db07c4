"""Action executor — applies queued non-combat actions to a town.

One handler per action type.  Each handler validates against the town
as currently stored (re-read before every action, so earlier actions in
the same tick are visible) and returns an ``ActionResult``.  Rule
violations are failed results, not exceptions.

Battle actions are not executed here; see battle_service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable

from townwars.models.actions import (
    Action,
    ActionResult,
    ActionType,
    BuyResourcePayload,
    ResourcePayload,
)
from townwars.models.buff import BuffKind
from townwars.models.static_data import RewardKind

if TYPE_CHECKING:
    from townwars.engine.action_queue import ActionQueue
    from townwars.engine.buff_service import BuffService
    from townwars.engine.error_service import ErrorService
    from townwars.engine.resource_service import ResourceService
    from townwars.engine.town_service import TownService
    from townwars.models.static_data import StaticData
    from townwars.models.town import Town
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


def sort_actions(actions: list[Action]) -> list[Action]:
    """Order actions by execution priority; ties keep queue order."""
    return sorted(actions, key=lambda a: a.priority)


@dataclass
class ExecutionReport:
    """Outcome of one town's action pass."""

    successful: list[tuple[Action, ActionResult]] = field(default_factory=list)
    failed: list[tuple[Action, ActionResult]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.successful) + len(self.failed)


class ActionExecutor:
    """Executes queued actions against the entity store.

    Args:
        database: Connected entity store.
        static_data: Balance tables.
        towns: Town service.
        resources: Resource service.
        buffs: Buff service.
        queue: Action queue (actions are removed through it).
        errors: Error sink for failed actions.
    """

    def __init__(
        self,
        database: Database,
        static_data: StaticData,
        towns: TownService,
        resources: ResourceService,
        buffs: BuffService,
        queue: ActionQueue,
        errors: ErrorService,
    ) -> None:
        self._db = database
        self._static = static_data
        self._towns = towns
        self._resources = resources
        self._buffs = buffs
        self._queue = queue
        self._errors = errors
        self._handlers: dict[ActionType, Callable[[Action, Town, int], Awaitable[ActionResult]]] = {
            ActionType.BUY_RESOURCE: self._buy_resource,
            ActionType.UPGRADE_RESOURCE: self._upgrade_resource,
            ActionType.COLLECT: self._collect,
            ActionType.BOOST: self._boost,
            ActionType.SHIELD: self._shield,
            ActionType.LEVEL_UP_REQUEST: self._level_up_request,
            ActionType.LEVEL_UP_APPROVAL: self._level_up_approval,
            ActionType.LEVEL_UP_CANCEL: self._level_up_cancel,
        }

    # -- Dispatch --------------------------------------------------------

    async def execute(self, action: Action, tick: int) -> ActionResult:
        """Execute a single action against the freshly loaded town.

        Raises:
            TownNotFound: If the owning town no longer exists.
            ValueError: If the stored payload does not fit the action type.
        """
        handler = self._handlers.get(action.type)
        if handler is None:
            return ActionResult.fail(f"{action.type.label} actions are processed separately")
        town = await self._towns.require_town(action.town_address)
        return await handler(action, town, tick)

    async def execute_pending(self, address: str, actions: list[Action], tick: int) -> ExecutionReport:
        """Run a town's non-battle actions in priority order.

        Every executed action is removed from the queue exactly once, whether
        it succeeded, failed, or raised.  An action that raises has its own
        writes rolled back.  Failures go to the error sink.
        """
        report = ExecutionReport()
        for action in sort_actions(actions):
            if action.type == ActionType.BATTLE:
                continue
            try:
                async with self._db.transaction():
                    result = await self.execute(action, tick)
            except Exception as exc:
                message = f"Action {action.type.label} failed: {exc}"
                log.warning("%s (town %s, tick %d)", message, address, tick)
                result = ActionResult.fail(message)
            else:
                if not result.success:
                    log.warning("%s for %s: %s", action.type.label, address, result.message)
            finally:
                await self._queue.remove(action.id)

            if result.success:
                report.successful.append((action, result))
            else:
                report.failed.append((action, result))
                await self._errors.log_town_error(address, result.message, tick)
        return report

    # -- Resources -------------------------------------------------------

    async def _buy_resource(self, action: Action, town: Town, tick: int) -> ActionResult:
        payload = action.payload
        if not isinstance(payload, BuyResourcePayload):
            raise ValueError(f"Expected a BuyResource payload, got {payload!r}")
        rtype = payload.resource_type

        definition = self._static.resource(rtype)
        if definition is None:
            return ActionResult.fail(f"Unknown resource type: {rtype}")

        limit = self._static.limit(town.level, rtype)
        if limit is None:
            return ActionResult.fail(f"Resource type {rtype} not available at level {town.level}")

        owned = await self._db.count_town_resources(town.address, rtype)
        if owned >= limit.count:
            return ActionResult.fail(f"Already have maximum {definition.name}s ({limit.count})")

        base = definition.levels.get(0)
        if base is None:
            return ActionResult.fail(f"Resource {definition.name} has no level 0")
        if town.coins < base.cost:
            return ActionResult.fail(f"Not enough coins (need {base.cost}, have {town.coins})")

        await self._towns.add_coins(town.address, -base.cost)
        await self._db.insert_resource(town.address, rtype, tick)
        return ActionResult(
            success=True,
            message=f"Bought {definition.name} for {base.cost} coins",
            channel_message=f"You bought a new {definition.name} ({owned + 1}/{limit.count})",
        )

    async def _upgrade_resource(self, action: Action, town: Town, tick: int) -> ActionResult:
        payload = action.payload
        if not isinstance(payload, ResourcePayload):
            raise ValueError(f"Expected a resource payload, got {payload!r}")

        resource = await self._db.get_resource(payload.resource_id)
        if resource is None:
            return ActionResult.fail(f"Resource not found: {payload.resource_id}")
        if resource.town_address != town.address:
            return ActionResult.fail("Resource does not belong to this town")

        definition = self._static.resource(resource.type)
        if definition is None:
            return ActionResult.fail(f"Unknown resource type: {resource.type}")

        limit = self._static.limit(town.level, resource.type)
        if limit is None:
            return ActionResult.fail("Resource not available at this level")
        if resource.level >= limit.max_level:
            return ActionResult.fail(
                f"{definition.name} already at max level ({limit.max_level}) "
                f"for town level {town.level}"
            )

        next_level = resource.level + 1
        stats = definition.levels.get(next_level)
        if stats is None:
            return ActionResult.fail(f"No definition for {definition.name} level {next_level}")
        if town.coins < stats.cost:
            return ActionResult.fail(f"Not enough coins (need {stats.cost}, have {town.coins})")

        await self._towns.add_coins(town.address, -stats.cost)
        await self._db.update_resource(resource.id, level=next_level)
        return ActionResult(
            success=True,
            message=f"Upgraded {definition.name} to level {next_level} for {stats.cost} coins",
            channel_message=f"You upgraded a {definition.name} to level {next_level}",
        )

    async def _collect(self, action: Action, town: Town, tick: int) -> ActionResult:
        payload = action.payload
        if not isinstance(payload, ResourcePayload):
            raise ValueError(f"Expected a resource payload, got {payload!r}")

        resource = await self._db.get_resource(payload.resource_id)
        if resource is None:
            return ActionResult.fail(f"Resource not found: {payload.resource_id}")
        if resource.town_address != town.address:
            return ActionResult.fail("Resource does not belong to this town")

        definition = self._static.resource(resource.type)
        if definition is None or definition.reward_kind == RewardKind.NONE:
            return ActionResult.fail("Resource has no rewards")
        if resource.rewards_bank <= 0:
            return ActionResult.fail("No rewards to collect")

        amount, kind = await self._resources.collect(resource.id, tick)
        if kind == RewardKind.COINS:
            await self._towns.add_coins(town.address, amount)
            return ActionResult(
                success=True,
                message=f"Collected {amount} coins",
                channel_message=f"You collected {amount} coins",
            )

        _, added = await self._towns.add_troops(town.address, amount)
        return ActionResult(
            success=True,
            message=f"Collected {added} troops",
            channel_message=f"You collected {added} troops",
        )

    # -- Buffs -----------------------------------------------------------

    async def _buy_buff(self, kind: BuffKind, town: Town, tick: int) -> ActionResult:
        stats = self._static.town_level(town.level)
        if stats is None:
            return ActionResult.fail(f"Invalid town level: {town.level}")

        name = kind.value
        current = await self._buffs.current_buff(kind, town.address, tick)
        if current is not None and current.blocks_purchase(tick):
            return ActionResult.fail(f"A {name} is already active or cooling down")

        if kind == BuffKind.SHIELD:
            cost, duration, cooldown = stats.shield_cost, stats.shield_duration, stats.shield_cooldown
        else:
            cost, duration, cooldown = stats.boost_cost, stats.boost_duration, stats.boost_cooldown
        if town.coins < cost:
            return ActionResult.fail(f"Not enough coins (need {cost}, have {town.coins})")

        await self._towns.add_coins(town.address, -cost)
        await self._buffs.create_buff(kind, town.address, tick, duration, cooldown)
        return ActionResult(
            success=True,
            message=f"Purchased {name} for {cost} coins",
            feed_message=f"{town.name} purchased a {name}",
        )

    async def _boost(self, action: Action, town: Town, tick: int) -> ActionResult:
        return await self._buy_buff(BuffKind.BOOST, town, tick)

    async def _shield(self, action: Action, town: Town, tick: int) -> ActionResult:
        return await self._buy_buff(BuffKind.SHIELD, town, tick)

    # -- Level-up --------------------------------------------------------

    async def _level_up_request(self, action: Action, town: Town, tick: int) -> ActionResult:
        if town.requested_level > town.level:
            return ActionResult.fail("Already have a pending level up request")
        target = town.level + 1
        if self._static.town_level(target) is None:
            return ActionResult.fail(f"Already at max level ({town.level})")

        await self._towns.update_town(town.address, requested_level=target)
        return ActionResult(
            success=True,
            message=f"Requested level up to {target}",
            feed_message=f"{town.name} requested town level upgrade",
        )

    async def _level_up_approval(self, action: Action, town: Town, tick: int) -> ActionResult:
        if not town.has_pending_level_up:
            return ActionResult.fail("No level up pending")

        town = await self._towns.level_up(town.address, tick)
        stats = self._static.town_level(town.level)
        if stats is not None:
            await self._buffs.replace_shield(
                town.address, tick, stats.shield_duration, stats.shield_cooldown,
            )
        return ActionResult(
            success=True,
            message=f"Town upgraded to level {town.level}",
            feed_message=f"{town.name} upgraded their town hall to level {town.level}",
        )

    async def _level_up_cancel(self, action: Action, town: Town, tick: int) -> ActionResult:
        if not town.has_pending_level_up:
            return ActionResult.fail("No level up pending")

        await self._towns.update_town(town.address, requested_level=town.level)
        return ActionResult(success=True, message="Cancelled level up request")
