"""Shared fixtures: a temporary database, the shipped balance tables and
a fully wired service container."""

from __future__ import annotations

import random
from pathlib import Path

import pytest
import pytest_asyncio

from townwars.loaders.game_config_loader import GameConfig
from townwars.loaders.static_data_loader import load_static_data
from townwars.main import Configuration, create_services
from townwars.persistence.database import Database

STATIC_DATA_PATH = Path(__file__).resolve().parents[2] / "config" / "static_data.yaml"


class RecordingSender:
    """MessageSender that keeps every message for assertions."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_to_channel(self, channel_id: str, text: str) -> None:
        self.sent.append((channel_id, text))

    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


@pytest.fixture(scope="session")
def static_data():
    return load_static_data(STATIC_DATA_PATH)


@pytest_asyncio.fixture
async def db(tmp_path):
    """Create a fresh on-disk database for each test."""
    database = Database(str(tmp_path / "test.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def services(db, static_data, sender):
    config = Configuration(game=GameConfig(db_path=":unused:"), static_data=static_data)
    return create_services(config, db, sender=sender, rng=random.Random(7))


async def make_town(services, address: str, *, level: int = 1, coins: int = 1000,
                    troops: int = 0, treasury: int = 0, channel_id: str = "",
                    tick: int = 0):
    """Create a town and force its balances (bypasses the level-up flow)."""
    await services.towns.create_town(address, channel_id or f"ch-{address}", address.title(), tick)
    return await services.towns.update_town(
        address, level=level, requested_level=level,
        coins=coins, troops=troops, treasury=treasury,
    )
