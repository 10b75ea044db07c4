"""Tick orchestrator — one batch run of the simulation.

Tick order (must be preserved):
1. clock        — advance, or resume an interrupted tick
2. cleanup      — drop expired shields, boosts and battles
3. per town (same tick for all, in creation order), in one transaction:
   a. accrue resource production
   b. execute non-combat actions
   c. launch battles from queued Battle actions
   d. settle battles this town started that end now
   e. stamp ``last_processed_tick``
   then, once committed, deliver the town's messages
4. mark the tick completed

Steps 1 and 2 are fatal on failure.  A failure inside step 3 rolls the
town back completely and is contained to it.  A run killed halfway
through a town leaves that town unstamped and unchanged, so the resumed
run processes it exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from townwars.engine.action_executor import ActionExecutor
    from townwars.engine.action_queue import ActionQueue
    from townwars.engine.battle_service import BattleService
    from townwars.engine.buff_service import BuffService
    from townwars.engine.error_service import ErrorService
    from townwars.engine.game_clock import GameClock
    from townwars.engine.notifier import Notifier
    from townwars.engine.resource_service import ResourceService
    from townwars.engine.town_service import TownService
    from townwars.models.actions import ActionResult
    from townwars.models.town import Town
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)


@dataclass
class TickReport:
    """Summary of one ``run_tick`` call."""

    tick: int
    resumed: bool = False
    expired_removed: int = 0
    towns_processed: int = 0
    towns_skipped: int = 0
    towns_failed: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    battles_started: int = 0
    battles_resolved: int = 0
    duration_ms: float = 0.0
    errors: list[str] = field(default_factory=list)


@dataclass
class _TownPass:
    """What one town's committed pass contributes to the report."""

    actions_succeeded: int = 0
    actions_failed: int = 0
    battles_started: int = 0
    battles_resolved: int = 0
    outbox: list[ActionResult] = field(default_factory=list)


class TickOrchestrator:
    """Runs the per-tick pipeline over every town.

    Args:
        database: Entity store, used for the per-town transaction.
        clock: Persisted tick counter.
        towns: Town service.
        resources: Resource service.
        buffs: Buff service.
        queue: Action queue.
        executor: Non-combat action executor.
        battles: Battle service.
        errors: Error sink.
        notifier: Channel and feed delivery.
    """

    def __init__(
        self,
        database: Database,
        clock: GameClock,
        towns: TownService,
        resources: ResourceService,
        buffs: BuffService,
        queue: ActionQueue,
        executor: ActionExecutor,
        battles: BattleService,
        errors: ErrorService,
        notifier: Notifier,
    ) -> None:
        self._db = database
        self._clock = clock
        self._towns = towns
        self._resources = resources
        self._buffs = buffs
        self._queue = queue
        self._executor = executor
        self._battles = battles
        self._errors = errors
        self._notifier = notifier
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        """Held for a whole run.  Writers outside the tick take it too."""
        return self._lock

    async def run_tick(self) -> TickReport:
        """Process one tick for all towns.

        Concurrent callers are serialized.

        Raises:
            Exception: Anything raised while reading/advancing the clock or
                during expiry cleanup; the run is aborted.
        """
        async with self._lock:
            return await self._run_tick()

    async def _run_tick(self) -> TickReport:
        t0 = time.monotonic()

        current = await self._clock.current_tick()
        completed = await self._clock.completed_tick()
        if completed < current:
            tick = current
            log.warning("Resuming unfinished tick %d", tick)
        else:
            tick = await self._clock.advance()
        report = TickReport(tick=tick, resumed=completed < current)

        report.expired_removed = await self._buffs.cleanup_expired(tick)

        for town in await self._towns.list_towns():
            if town.last_processed_tick >= tick:
                report.towns_skipped += 1
                continue
            try:
                async with self._db.transaction():
                    town_pass = await self._process_town(town, tick)
            except Exception as exc:
                report.towns_failed += 1
                message = f"Tick {tick} failed: {exc}"
                report.errors.append(f"{town.address}: {message}")
                log.exception("Error processing town %s at tick %d", town.address, tick)
                await self._errors.log_town_error(town.address, message, tick)
                await self._discard_actions(town.address, tick)
                continue

            report.towns_processed += 1
            report.actions_succeeded += town_pass.actions_succeeded
            report.actions_failed += town_pass.actions_failed
            report.battles_started += town_pass.battles_started
            report.battles_resolved += town_pass.battles_resolved
            for result in town_pass.outbox:
                await self._deliver(town, result)

        await self._clock.mark_completed(tick)

        report.duration_ms = (time.monotonic() - t0) * 1000
        log.info(
            "Tick %d done in %.1f ms: %d towns (%d skipped, %d failed), "
            "%d actions ok, %d failed, %d battles started, %d resolved",
            tick, report.duration_ms, report.towns_processed, report.towns_skipped,
            report.towns_failed, report.actions_succeeded, report.actions_failed,
            report.battles_started, report.battles_resolved,
        )
        return report

    async def _process_town(self, town: Town, tick: int) -> _TownPass:
        town_pass = _TownPass()
        await self._resources.accrue_town(town.address, tick)

        actions = await self._queue.dequeue(town.address, tick)
        execution = await self._executor.execute_pending(town.address, actions, tick)
        town_pass.actions_succeeded += len(execution.successful)
        town_pass.actions_failed += len(execution.failed)
        town_pass.outbox.extend(result for _, result in execution.successful)

        for result in await self._battles.execute_battle_actions(town.address, actions, tick):
            if result.success:
                town_pass.battles_started += 1
                town_pass.outbox.append(result)
            else:
                town_pass.actions_failed += 1

        for result in await self._battles.resolve_battles(town.address, tick):
            town_pass.battles_resolved += 1
            town_pass.outbox.append(result)

        await self._towns.update_town(town.address, last_processed_tick=tick)
        return town_pass

    async def _discard_actions(self, address: str, tick: int) -> None:
        """Consume the actions of a town whose pass was rolled back."""
        try:
            for action in await self._queue.dequeue(address, tick):
                await self._queue.remove(action.id)
        except Exception:
            log.exception("Could not discard actions of town %s at tick %d", address, tick)

    async def _deliver(self, town: Town, result: ActionResult) -> None:
        if result.channel_message:
            await self._notifier.channel(town.channel_id, result.channel_message)
        if result.feed_message:
            await self._notifier.feed(result.feed_message)
