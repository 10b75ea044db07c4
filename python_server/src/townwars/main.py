"""Tick engine entry point.

Initializes all components and runs the simulation:
1. Load configuration (game constants, static balance tables)
2. Initialize persistence layer (database)
3. Create engine services (clock, towns, resources, buffs, queue, executor, battles)
4. Either run exactly one tick (cron mode) or
5. start the REST admin API and
6. start the tick loop (watch mode)

Usage:
    python -m townwars.main            # watch mode: REST API + tick loop
    python -m townwars.main --once     # cron mode: one tick, then exit
    # or via entry point:
    townwars [--once] [--config <path>]
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal
import sys
from dataclasses import dataclass, field
from typing import Optional

from townwars.engine.action_executor import ActionExecutor
from townwars.engine.action_queue import ActionQueue
from townwars.engine.battle_service import BattleService
from townwars.engine.buff_service import BuffService
from townwars.engine.error_service import ErrorService
from townwars.engine.game_clock import GameClock
from townwars.engine.notifier import MessageSender, Notifier
from townwars.engine.resource_service import ResourceService
from townwars.engine.tick_loop import TickLoop
from townwars.engine.tick_orchestrator import TickOrchestrator, TickReport
from townwars.engine.town_service import TownService
from townwars.loaders.game_config_loader import (
    DEFAULT_GAME_CONFIG_PATH,
    GameConfig,
    load_game_config,
)
from townwars.loaders.static_data_loader import load_static_data
from townwars.models.static_data import StaticData
from townwars.persistence.database import Database

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Container for all loaded configuration
# ---------------------------------------------------------------------------


@dataclass
class Configuration:
    """Holds all data loaded from config files."""

    game: GameConfig = field(default_factory=GameConfig)
    static_data: Optional[StaticData] = None


# ---------------------------------------------------------------------------
# Container for all services (makes passing around easier)
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Holds references to all engine services."""

    game_config: Optional[GameConfig] = None
    static_data: Optional[StaticData] = None
    database: Optional[Database] = None
    clock: Optional[GameClock] = None
    towns: Optional[TownService] = None
    resources: Optional[ResourceService] = None
    buffs: Optional[BuffService] = None
    queue: Optional[ActionQueue] = None
    errors: Optional[ErrorService] = None
    notifier: Optional[Notifier] = None
    executor: Optional[ActionExecutor] = None
    battles: Optional[BattleService] = None
    orchestrator: Optional[TickOrchestrator] = None
    tick_loop: Optional[TickLoop] = None
    rest_server: Optional[object] = None


# ===================================================================
# 1. Load configuration
# ===================================================================


def load_configuration(config_path: str = DEFAULT_GAME_CONFIG_PATH) -> Configuration:
    """Load the game constants and the static balance tables.

    Raises:
        StaticDataError: If the balance tables are missing or inconsistent.
    """
    log.info("Loading configuration …")
    game = load_game_config(config_path)
    static_data = load_static_data(game.static_data_path)
    log.info(
        "  static_data:  %d town levels, %d resource types",
        len(static_data.town_levels), len(static_data.resources),
    )
    return Configuration(game=game, static_data=static_data)


# ===================================================================
# 2. Initialize persistence layer
# ===================================================================


async def init_persistence(db_path: str) -> Database:
    """Open the database, creating the schema on first use."""
    log.info("Initializing persistence …")
    database = Database(db_path)
    await database.connect()
    log.info("  database:     connected (%s)", db_path)
    return database


# ===================================================================
# 3. Create engine services
# ===================================================================


def create_services(
    config: Configuration,
    database: Database,
    sender: MessageSender | None = None,
    rng: random.Random | None = None,
) -> Services:
    """Instantiate all engine services with proper dependency injection.

    Wiring order matters: services that are injected into others are created first.

    Args:
        config: Loaded configuration.
        database: Connected database instance.
        sender: Message transport (defaults to logging).
        rng: Random source for battle cooldown rolls.
    """
    log.info("Creating services …")
    gc = config.game
    static = config.static_data
    if static is None:
        raise ValueError("Configuration has no static data loaded")

    clock = GameClock(database)
    towns = TownService(database, static)
    resources = ResourceService(database, static, gc.rewards_cooldown_ticks)
    buffs = BuffService(database)
    queue = ActionQueue(database)
    errors = ErrorService(database)
    notifier = Notifier(database, sender)
    executor = ActionExecutor(database, static, towns, resources, buffs, queue, errors)
    battles = BattleService(
        database, static, towns, buffs, queue, errors,
        rng=rng,
        reward_fraction=gc.battle_reward_fraction,
        penalty_fraction=gc.battle_penalty_fraction,
    )
    orchestrator = TickOrchestrator(
        database, clock, towns, resources, buffs, queue, executor, battles, errors, notifier,
    )
    tick_loop = TickLoop(orchestrator, gc.tick_interval_seconds)
    log.info("  all services created")

    return Services(
        game_config=gc,
        static_data=static,
        database=database,
        clock=clock,
        towns=towns,
        resources=resources,
        buffs=buffs,
        queue=queue,
        errors=errors,
        notifier=notifier,
        executor=executor,
        battles=battles,
        orchestrator=orchestrator,
        tick_loop=tick_loop,
    )


# ===================================================================
# 4. Single tick (cron mode)
# ===================================================================


async def run_single_tick(services: Services) -> TickReport:
    """Run one tick and prune old town errors."""
    report = await services.orchestrator.run_tick()
    await services.errors.clear_old_errors(services.game_config.error_retention_days)
    return report


# ===================================================================
# 5. Start network server
# ===================================================================


async def start_network(services: Services) -> None:
    """Start the REST admin API as a background task via uvicorn."""
    log.info("Starting REST API …")
    from townwars.network.rest_api import create_app
    import uvicorn

    gc = services.game_config
    config = uvicorn.Config(
        create_app(services),
        host=gc.rest_host,
        port=gc.rest_port,
        log_level="info",
        access_log=False,
    )
    rest_server = uvicorn.Server(config)
    services.rest_server = rest_server

    # Start as background task (non-blocking)
    asyncio.create_task(rest_server.serve())
    log.info("  REST API listening on http://%s:%d", gc.rest_host, gc.rest_port)


# ===================================================================
# 6. Start tick loop
# ===================================================================


async def start_tick_loop(services: Services) -> None:
    """Run the tick loop until a shutdown signal is received."""
    log.info("Starting tick loop …")
    loop = asyncio.get_running_loop()

    def _request_shutdown() -> None:
        log.info("Shutdown signal received — stopping …")
        services.tick_loop.stop()
        if services.rest_server is not None:
            services.rest_server.should_exit = True

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown)

    log.info("  tick loop running (%.1f s interval)", services.game_config.tick_interval_seconds)
    await services.tick_loop.run()


# ===================================================================
# Entry points
# ===================================================================


async def _start(config_path: str = DEFAULT_GAME_CONFIG_PATH, once: bool = False) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log.info("=== Town Wars engine starting ===")

    # 1. Load configuration
    config = load_configuration(config_path)

    # 2. Initialize persistence
    database = await init_persistence(config.game.db_path)

    try:
        # 3. Create services
        services = create_services(config, database)

        if once:
            # 4. Cron mode
            await run_single_tick(services)
            return

        # 5. Start network
        await start_network(services)

        # 6. Start tick loop (blocks until shutdown)
        await start_tick_loop(services)
    finally:
        await database.close()
        log.info("  database closed")


def main() -> None:
    """Entry point for the tick engine.

    Supports command-line arguments:
        --once             Run a single tick and exit (for cron)
        --config <path>    Use a custom game config file (default: config/game.yaml)
    """
    config_path = DEFAULT_GAME_CONFIG_PATH
    once = "--once" in sys.argv

    if "--config" in sys.argv:
        idx = sys.argv.index("--config")
        if idx + 1 >= len(sys.argv):
            print("Error: --config requires an argument", file=sys.stderr)
            sys.exit(1)
        config_path = sys.argv[idx + 1]

    asyncio.run(_start(config_path=config_path, once=once))


if __name__ == "__main__":
    main()
