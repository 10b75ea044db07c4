"""REST API — FastAPI application for operating the tick engine.

Usage::

    from townwars.network.rest_api import create_app

    app = create_app(services)
    # Start with uvicorn as an asyncio task alongside the tick loop

Endpoints that write take the orchestrator lock, so they never interleave
with a running tick.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, TYPE_CHECKING

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from townwars.errors import TownNotFound
from townwars.models.actions import (
    ActionType,
    BattlePayload,
    BuyResourcePayload,
    NoPayload,
    Payload,
    ResourcePayload,
)
from townwars.network.rest_models import (
    EngageRequest,
    EngageResponse,
    QueueActionRequest,
    QueueActionResponse,
    StatusResponse,
    TickResponse,
    TipRequest,
    TipResponse,
    TownStateResponse,
    TownSummary,
)
from townwars.util.format import format_dollars

if TYPE_CHECKING:
    from townwars.engine.town_service import TownState
    from townwars.main import Services
    from townwars.models.battle import Battle
    from townwars.models.town import Town

log = logging.getLogger(__name__)


def _town_summary(town: Town) -> dict[str, Any]:
    return asdict(town)


def _battle_summary(battle: Battle, tick: int) -> dict[str, Any]:
    return {
        **asdict(battle),
        "phase": battle.phase(tick).value,
        "actual_reward": battle.actual_reward,
    }


def _build_town_state(services: "Services", state: TownState, tick: int,
                      pending: list) -> dict[str, Any]:
    static = services.static_data
    resources = []
    for r in state.resources:
        stats = static.resource_level(r.type, r.level)
        resources.append({
            **asdict(r),
            "name": static.resource_name(r.type),
            "rewards_per_tick": stats.rewards_per_tick if stats else 0,
            "hp": stats.hp if stats else 0,
        })

    battle = _battle_summary(state.battle, tick) if state.battle is not None else None

    def _buff(buff: Any) -> dict[str, Any] | None:
        if buff is None:
            return None
        data = asdict(buff)
        data["kind"] = buff.kind.value
        data["status"] = buff.status(tick).value
        return data

    return {
        "tick": tick,
        "town": _town_summary(state.town),
        "treasury_display": format_dollars(state.town.treasury),
        "max_troops": static.max_troops(state.town.level),
        "resources": resources,
        "battle": battle,
        "shield": _buff(state.shield),
        "boost": _buff(state.boost),
        "flags": {
            "battle_active": state.battle_active,
            "battle_summary": state.battle_summary,
            "battle_cooldown": state.battle_cooldown,
            "shield_active": state.shield_active,
            "shield_cooldown": state.shield_cooldown,
            "boost_active": state.boost_active,
            "boost_cooldown": state.boost_cooldown,
            "celebrating": state.celebrating,
        },
        "boost_multiplier": state.boost_multiplier,
        "pending_actions": [
            {"id": a.id, "tick": a.tick, "type": a.type.label, "data": a.data}
            for a in pending
        ],
    }


def _payload_for(action_type: ActionType, body: QueueActionRequest) -> Payload:
    """Build the typed payload from the request body.

    Raises:
        ValueError: If a field the action needs is missing.
    """
    if action_type == ActionType.BUY_RESOURCE:
        if body.resource_type is None:
            raise ValueError("resource_type is required")
        return BuyResourcePayload(resource_type=body.resource_type)
    if action_type in (ActionType.UPGRADE_RESOURCE, ActionType.COLLECT):
        if not body.resource_id:
            raise ValueError("resource_id is required")
        return ResourcePayload(resource_id=body.resource_id)
    if action_type == ActionType.BATTLE:
        if not body.target_address:
            raise ValueError("target_address is required")
        return BattlePayload(target_address=body.target_address)
    return NoPayload()


def create_app(services: "Services") -> FastAPI:
    """Factory: create and return a configured FastAPI application.

    The ``services`` reference is captured by closure so every endpoint
    can access game logic without global state.
    """
    app = FastAPI(title="Town Wars Engine", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def _require_town(address: str) -> Town:
        town = await services.towns.get_town(address)
        if town is None:
            raise HTTPException(status_code=404, detail=f"Town not found: {address}")
        return town

    # =================================================================
    # Status
    # =================================================================

    @app.get("/api/status", response_model=StatusResponse)
    async def get_status() -> dict[str, Any]:
        current = await services.clock.current_tick()
        completed = await services.clock.completed_tick()
        towns = await services.towns.list_towns()
        loop = services.tick_loop
        return {
            "current_tick": current,
            "completed_tick": completed,
            "towns": len(towns),
            "tick_interval_seconds": services.game_config.tick_interval_seconds,
            "loop_running": loop.is_running if loop else False,
            "loop_ticks": loop.tick_count if loop else 0,
            "loop_failures": loop.failed_count if loop else 0,
            "last_tick_duration_ms": loop.last_tick_duration_ms if loop else 0.0,
            "avg_tick_duration_ms": loop.avg_tick_duration_ms if loop else 0.0,
            "uptime_seconds": loop.uptime_seconds if loop else 0.0,
        }

    # =================================================================
    # Towns
    # =================================================================

    @app.get("/api/towns", response_model=list[TownSummary])
    async def list_towns() -> list[dict[str, Any]]:
        return [_town_summary(t) for t in await services.towns.list_towns()]

    @app.post("/api/towns", response_model=EngageResponse)
    async def engage(body: EngageRequest) -> dict[str, Any]:
        async with services.orchestrator.lock:
            tick = await services.clock.current_tick()
            town, is_new = await services.towns.get_or_create_town(
                body.address, body.channel_id, body.name, tick,
            )
        if is_new:
            await services.notifier.feed(f"🏰 {town.name} joined the war!")
        return {"success": True, "is_new": is_new, "town": _town_summary(town)}

    @app.get("/api/towns/{address}", response_model=TownStateResponse)
    async def get_town_state(address: str) -> dict[str, Any]:
        town = await _require_town(address)
        tick = await services.clock.current_tick()
        state = await services.towns.town_state(town, tick)
        pending = await services.queue.actions_for_town(address)
        return _build_town_state(services, state, tick, pending)

    @app.delete("/api/towns/{address}")
    async def quit_town(address: str) -> dict[str, Any]:
        async with services.orchestrator.lock:
            deleted = await services.towns.delete_town(address)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Town not found: {address}")
        return {"success": True}

    @app.get("/api/towns/{address}/errors")
    async def get_town_errors(address: str, limit: int = 10) -> dict[str, Any]:
        await _require_town(address)
        return {"errors": await services.errors.get_town_errors(address, limit)}

    # =================================================================
    # Actions
    # =================================================================

    @app.post("/api/towns/{address}/actions", response_model=QueueActionResponse)
    async def queue_action(address: str, body: QueueActionRequest) -> dict[str, Any]:
        town = await _require_town(address)
        try:
            action_type = ActionType[body.action.upper()]
        except KeyError:
            return {"success": False, "error": f"Unknown action: {body.action}"}

        try:
            payload = _payload_for(action_type, body)
        except ValueError as exc:
            return {"success": False, "error": str(exc)}

        if action_type == ActionType.BATTLE:
            problem = await services.battles.validate_attack(town, body.target_address)
            if problem is not None:
                return {"success": False, "error": problem}

        # The scheduled tick must still be in the future when the row lands.
        async with services.orchestrator.lock:
            tick = await services.clock.current_tick() + services.game_config.action_delay_ticks
            action = await services.queue.enqueue(address, tick, action_type, payload)
        return {"success": True, "action_id": action.id, "tick": tick}

    @app.post("/api/towns/{address}/tip", response_model=TipResponse)
    async def tip(address: str, body: TipRequest) -> dict[str, Any]:
        try:
            async with services.orchestrator.lock:
                town, coins = await services.towns.add_tip(address, body.eth_amount)
        except TownNotFound:
            raise HTTPException(status_code=404, detail=f"Town not found: {address}")
        await services.notifier.channel(
            town.channel_id, f"💰 Tip received! +{coins} coins added to your town.",
        )
        return {"success": True, "coins_added": coins, "coins": town.coins}

    # =================================================================
    # Battles
    # =================================================================

    @app.get("/api/battles")
    async def list_battles() -> dict[str, Any]:
        tick = await services.clock.current_tick()
        battles = await services.database.list_battles()
        return {"tick": tick, "battles": [_battle_summary(b, tick) for b in battles]}

    @app.get("/api/battles/{battle_id}")
    async def get_battle(battle_id: str) -> dict[str, Any]:
        battle = await services.database.get_battle(battle_id)
        if battle is None:
            raise HTTPException(status_code=404, detail=f"Battle not found: {battle_id}")
        return _battle_summary(battle, await services.clock.current_tick())

    # =================================================================
    # Tick
    # =================================================================

    @app.post("/api/tick", response_model=TickResponse)
    async def run_tick() -> dict[str, Any]:
        report = await services.orchestrator.run_tick()
        return asdict(report)

    return app
