"""Database access — aiosqlite entity store for the tick engine.

Provides async database operations for:
- Game state (the global tick counter)
- Towns
- Resource instances
- Shields and boosts
- Battles
- Queued actions
- Per-town error log

Every row owned by a town is removed together with the town
(``ON DELETE CASCADE``).
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import aiosqlite

from townwars.models.actions import Action, ActionType, Payload, encode_payload
from townwars.models.battle import Battle
from townwars.models.buff import Buff, BuffKind
from townwars.models.resource import Resource
from townwars.models.town import Town

log = logging.getLogger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS game_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    current_tick INTEGER NOT NULL DEFAULT 0,
    completed_tick INTEGER NOT NULL DEFAULT 0,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS towns (
    address TEXT PRIMARY KEY,
    channel_id TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL DEFAULT '',
    level INTEGER NOT NULL DEFAULT 0,
    requested_level INTEGER NOT NULL DEFAULT 1,
    leveled_up_at INTEGER NOT NULL DEFAULT 0,
    coins INTEGER NOT NULL DEFAULT 0,
    troops INTEGER NOT NULL DEFAULT 0,
    treasury INTEGER NOT NULL DEFAULT 0,
    last_processed_tick INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS resources (
    id TEXT PRIMARY KEY,
    town_address TEXT NOT NULL REFERENCES towns(address) ON DELETE CASCADE,
    type INTEGER NOT NULL,
    level INTEGER NOT NULL DEFAULT 0,
    acquired_at INTEGER NOT NULL,
    collected_at INTEGER NOT NULL,
    rewards_bank INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_resources_town ON resources(town_address, type);

CREATE TABLE IF NOT EXISTS shields (
    id TEXT PRIMARY KEY,
    town_address TEXT NOT NULL REFERENCES towns(address) ON DELETE CASCADE,
    start INTEGER NOT NULL,
    "end" INTEGER NOT NULL,
    cooldown_end INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_shields_town ON shields(town_address, cooldown_end);

CREATE TABLE IF NOT EXISTS boosts (
    id TEXT PRIMARY KEY,
    town_address TEXT NOT NULL REFERENCES towns(address) ON DELETE CASCADE,
    start INTEGER NOT NULL,
    "end" INTEGER NOT NULL,
    cooldown_end INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_boosts_town ON boosts(town_address, cooldown_end);

CREATE TABLE IF NOT EXISTS battles (
    id TEXT PRIMARY KEY,
    attacker_address TEXT NOT NULL REFERENCES towns(address) ON DELETE CASCADE,
    defender_address TEXT NOT NULL REFERENCES towns(address) ON DELETE CASCADE,
    start INTEGER NOT NULL,
    "end" INTEGER NOT NULL,
    cooldown_end INTEGER NOT NULL,
    reward INTEGER NOT NULL,
    penalty INTEGER NOT NULL,
    success INTEGER NOT NULL,
    percentage INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_battles_attacker ON battles(attacker_address, "end");
CREATE INDEX IF NOT EXISTS idx_battles_defender ON battles(defender_address, "end");

CREATE TABLE IF NOT EXISTS actions (
    id TEXT PRIMARY KEY,
    town_address TEXT NOT NULL REFERENCES towns(address) ON DELETE CASCADE,
    tick INTEGER NOT NULL,
    type INTEGER NOT NULL CHECK (type BETWEEN 0 AND 8),
    data TEXT
);
CREATE INDEX IF NOT EXISTS idx_actions_town_tick ON actions(town_address, tick);

CREATE TABLE IF NOT EXISTS town_errors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    town_address TEXT NOT NULL REFERENCES towns(address) ON DELETE CASCADE,
    message TEXT NOT NULL,
    tick INTEGER NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

_TOWN_COLUMNS = (
    "address, channel_id, name, level, requested_level, leveled_up_at, "
    "coins, troops, treasury, last_processed_tick"
)
_TOWN_UPDATABLE = frozenset({
    "channel_id", "name", "level", "requested_level", "leveled_up_at",
    "coins", "troops", "treasury", "last_processed_tick",
})

_RESOURCE_COLUMNS = "id, town_address, type, level, acquired_at, collected_at, rewards_bank"
_RESOURCE_UPDATABLE = frozenset({"level", "collected_at", "rewards_bank"})

_BUFF_TABLES = {BuffKind.SHIELD: "shields", BuffKind.BOOST: "boosts"}

_BATTLE_COLUMNS = (
    'id, attacker_address, defender_address, start, "end", cooldown_end, '
    "reward, penalty, success, percentage"
)


def _new_id() -> str:
    return uuid.uuid4().hex


def _town(row: Any) -> Town:
    return Town(
        address=row[0],
        channel_id=row[1],
        name=row[2],
        level=row[3],
        requested_level=row[4],
        leveled_up_at=row[5],
        coins=row[6],
        troops=row[7],
        treasury=row[8],
        last_processed_tick=row[9],
    )


def _resource(row: Any) -> Resource:
    return Resource(
        id=row[0],
        town_address=row[1],
        type=row[2],
        level=row[3],
        acquired_at=row[4],
        collected_at=row[5],
        rewards_bank=row[6],
    )


def _buff(kind: BuffKind, row: Any) -> Buff:
    return Buff(
        id=row[0],
        kind=kind,
        town_address=row[1],
        start=row[2],
        end=row[3],
        cooldown_end=row[4],
    )


def _battle(row: Any) -> Battle:
    return Battle(
        id=row[0],
        attacker_address=row[1],
        defender_address=row[2],
        start=row[3],
        end=row[4],
        cooldown_end=row[5],
        reward=row[6],
        penalty=row[7],
        success=bool(row[8]),
        percentage=row[9],
    )


def _action(row: Any) -> Action:
    return Action(
        id=row[0],
        town_address=row[1],
        tick=row[2],
        type=ActionType(row[3]),
        data=json.loads(row[4]) if row[4] else None,
    )


class Database:
    """Async SQLite database wrapper.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str = "townwars.db") -> None:
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._tx_depth = 0

    async def connect(self) -> None:
        """Open the database connection and create tables if needed."""
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute("PRAGMA foreign_keys = ON")
        await self._conn.executescript(_SCHEMA)
        await self._conn.execute(
            "INSERT OR IGNORE INTO game_state (id, current_tick, completed_tick) VALUES (1, 0, 0)"
        )
        await self._conn.commit()
        log.info("Database connected: %s", self._db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _fetchone(self, sql: str, params: tuple = ()) -> Any:
        assert self._conn is not None
        async with self._conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[Any]:
        assert self._conn is not None
        async with self._conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def _write(self, sql: str, params: tuple = ()) -> int:
        """Execute one statement and return the affected row count.

        Commits immediately unless a ``transaction()`` block is open.
        """
        assert self._conn is not None
        async with self._conn.execute(sql, params) as cursor:
            count = cursor.rowcount
        if self._tx_depth == 0:
            await self._conn.commit()
        return count

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Group every write inside the block into one atomic unit.

        The block commits when it exits and rolls back when it raises,
        including on cancellation.  Nested blocks become savepoints, so an
        inner failure only undoes the inner writes.
        """
        assert self._conn is not None
        depth = self._tx_depth
        savepoint = f"tx_{depth}"
        await self._conn.execute("BEGIN" if depth == 0 else f"SAVEPOINT {savepoint}")
        self._tx_depth += 1
        try:
            yield
        except BaseException:
            self._tx_depth = depth
            if depth == 0:
                await self._conn.rollback()
            else:
                await self._conn.execute(f"ROLLBACK TO {savepoint}")
                await self._conn.execute(f"RELEASE {savepoint}")
            raise
        self._tx_depth = depth
        if depth == 0:
            await self._conn.commit()
        else:
            await self._conn.execute(f"RELEASE {savepoint}")

    # -- Game state ------------------------------------------------------

    async def get_game_state(self) -> tuple[int, int]:
        """Return ``(current_tick, completed_tick)``."""
        row = await self._fetchone("SELECT current_tick, completed_tick FROM game_state WHERE id = 1")
        return row[0], row[1]

    async def increment_tick(self) -> int:
        """Advance the tick counter by one and return the new value."""
        await self._write(
            "UPDATE game_state SET current_tick = current_tick + 1, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = 1"
        )
        current, _ = await self.get_game_state()
        return current

    async def set_completed_tick(self, tick: int) -> None:
        await self._write(
            "UPDATE game_state SET completed_tick = ?, updated_at = CURRENT_TIMESTAMP WHERE id = 1",
            (tick,),
        )

    async def set_tick(self, tick: int) -> None:
        """Force the tick counter (test setup only); also marks it completed."""
        await self._write(
            "UPDATE game_state SET current_tick = ?, completed_tick = ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = 1",
            (tick, tick),
        )

    # -- Towns -----------------------------------------------------------

    async def get_town(self, address: str) -> Optional[Town]:
        """Look up a town by address."""
        row = await self._fetchone(f"SELECT {_TOWN_COLUMNS} FROM towns WHERE address = ?", (address,))
        return _town(row) if row else None

    async def list_towns(self) -> list[Town]:
        """Return all towns in creation order."""
        rows = await self._fetchall(f"SELECT {_TOWN_COLUMNS} FROM towns ORDER BY rowid")
        return [_town(r) for r in rows]

    async def list_channel_ids(self) -> list[str]:
        """Return the distinct channel ids of all towns."""
        rows = await self._fetchall("SELECT DISTINCT channel_id FROM towns WHERE channel_id != ''")
        return [r[0] for r in rows]

    async def insert_town(self, town: Town) -> Town:
        await self._write(
            f"INSERT INTO towns ({_TOWN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                town.address, town.channel_id, town.name, town.level,
                town.requested_level, town.leveled_up_at, town.coins,
                town.troops, town.treasury, town.last_processed_tick,
            ),
        )
        log.info("Created town %s (%r)", town.address, town.name)
        return town

    async def update_town(self, address: str, **fields: Any) -> Optional[Town]:
        """Set the given columns on a town and return the updated row."""
        unknown = set(fields) - _TOWN_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update town columns: {sorted(unknown)}")
        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            await self._write(
                f"UPDATE towns SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE address = ?",
                (*fields.values(), address),
            )
        return await self.get_town(address)

    async def add_town_counters(self, address: str, coins: int = 0, troops: int = 0) -> Optional[Town]:
        """Add deltas to coins/troops in place and return the updated row."""
        await self._write(
            "UPDATE towns SET coins = coins + ?, troops = troops + ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE address = ?",
            (coins, troops, address),
        )
        return await self.get_town(address)

    async def delete_town(self, address: str) -> bool:
        """Delete a town and everything it owns. Returns True if deleted."""
        deleted = await self._write("DELETE FROM towns WHERE address = ?", (address,)) > 0
        if deleted:
            log.info("Deleted town %s", address)
        return deleted

    async def transfer_treasury(self, from_address: str, to_address: str, debit: int, credit: int) -> None:
        """Debit one treasury (clamped at 0) and credit another in one transaction."""
        async with self.transaction():
            await self._write(
                "UPDATE towns SET treasury = MAX(0, treasury - ?), "
                "updated_at = CURRENT_TIMESTAMP WHERE address = ?",
                (debit, from_address),
            )
            await self._write(
                "UPDATE towns SET treasury = treasury + ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE address = ?",
                (credit, to_address),
            )

    # -- Resources -------------------------------------------------------

    async def get_resource(self, resource_id: str) -> Optional[Resource]:
        row = await self._fetchone(
            f"SELECT {_RESOURCE_COLUMNS} FROM resources WHERE id = ?", (resource_id,)
        )
        return _resource(row) if row else None

    async def list_town_resources(self, address: str) -> list[Resource]:
        rows = await self._fetchall(
            f"SELECT {_RESOURCE_COLUMNS} FROM resources WHERE town_address = ? ORDER BY rowid",
            (address,),
        )
        return [_resource(r) for r in rows]

    async def count_town_resources(self, address: str, resource_type: int) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) FROM resources WHERE town_address = ? AND type = ?",
            (address, resource_type),
        )
        return row[0]

    async def insert_resource(self, address: str, resource_type: int, tick: int) -> Resource:
        """Create a level-0 resource acquired (and last collected) at ``tick``."""
        resource = Resource(
            id=_new_id(), town_address=address, type=resource_type,
            level=0, acquired_at=tick, collected_at=tick, rewards_bank=0,
        )
        await self._write(
            f"INSERT INTO resources ({_RESOURCE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                resource.id, resource.town_address, resource.type, resource.level,
                resource.acquired_at, resource.collected_at, resource.rewards_bank,
            ),
        )
        return resource

    async def update_resource(self, resource_id: str, **fields: Any) -> None:
        unknown = set(fields) - _RESOURCE_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update resource columns: {sorted(unknown)}")
        assignments = ", ".join(f"{name} = ?" for name in fields)
        await self._write(
            f"UPDATE resources SET {assignments} WHERE id = ?",
            (*fields.values(), resource_id),
        )

    async def add_resource_rewards(self, resource_id: str, amount: int) -> None:
        await self._write(
            "UPDATE resources SET rewards_bank = rewards_bank + ? WHERE id = ?",
            (amount, resource_id),
        )

    async def take_resource_rewards(self, resource_id: str, tick: int) -> Optional[Resource]:
        """Zero the rewards bank and stamp ``collected_at`` in one transaction.

        Returns the resource as it was *before* the reset, or None if missing.
        """
        async with self.transaction():
            row = await self._fetchone(
                f"SELECT {_RESOURCE_COLUMNS} FROM resources WHERE id = ?", (resource_id,)
            )
            if row is None:
                return None
            await self._write(
                "UPDATE resources SET rewards_bank = 0, collected_at = ? WHERE id = ?",
                (tick, resource_id),
            )
        return _resource(row)

    # -- Buffs -----------------------------------------------------------

    async def insert_buff(self, kind: BuffKind, address: str, start: int, end: int, cooldown_end: int) -> Buff:
        buff = Buff(id=_new_id(), kind=kind, town_address=address,
                    start=start, end=end, cooldown_end=cooldown_end)
        await self._write(
            f'INSERT INTO {_BUFF_TABLES[kind]} (id, town_address, start, "end", cooldown_end) '
            "VALUES (?, ?, ?, ?, ?)",
            (buff.id, address, start, end, cooldown_end),
        )
        return buff

    async def get_current_buff(self, kind: BuffKind, address: str, tick: int) -> Optional[Buff]:
        """Return the newest buff of ``kind`` that is not yet expired at ``tick``."""
        row = await self._fetchone(
            f'SELECT id, town_address, start, "end", cooldown_end FROM {_BUFF_TABLES[kind]} '
            "WHERE town_address = ? AND cooldown_end > ? ORDER BY start DESC, rowid DESC LIMIT 1",
            (address, tick),
        )
        return _buff(kind, row) if row else None

    async def delete_town_buffs(self, kind: BuffKind, address: str) -> int:
        """Remove every buff of ``kind`` owned by the town. Returns the count."""
        return await self._write(
            f"DELETE FROM {_BUFF_TABLES[kind]} WHERE town_address = ?", (address,)
        )

    async def delete_expired_buffs(self, kind: BuffKind, tick: int) -> int:
        return await self._write(
            f"DELETE FROM {_BUFF_TABLES[kind]} WHERE cooldown_end <= ?", (tick,)
        )

    # -- Battles ---------------------------------------------------------

    async def insert_battle(self, battle: Battle) -> Battle:
        await self._write(
            f"INSERT INTO battles ({_BATTLE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                battle.id, battle.attacker_address, battle.defender_address,
                battle.start, battle.end, battle.cooldown_end, battle.reward,
                battle.penalty, int(battle.success), battle.percentage,
            ),
        )
        return battle

    async def get_battle(self, battle_id: str) -> Optional[Battle]:
        row = await self._fetchone(f"SELECT {_BATTLE_COLUMNS} FROM battles WHERE id = ?", (battle_id,))
        return _battle(row) if row else None

    async def get_current_battle(self, address: str, tick: int) -> Optional[Battle]:
        """Return the newest battle involving ``address`` not yet expired at ``tick``."""
        row = await self._fetchone(
            f"SELECT {_BATTLE_COLUMNS} FROM battles "
            "WHERE (attacker_address = ? OR defender_address = ?) AND cooldown_end > ? "
            "ORDER BY start DESC, rowid DESC LIMIT 1",
            (address, address, tick),
        )
        return _battle(row) if row else None

    async def list_battles_ending(self, attacker_address: str, tick: int) -> list[Battle]:
        rows = await self._fetchall(
            f'SELECT {_BATTLE_COLUMNS} FROM battles WHERE attacker_address = ? AND "end" = ? '
            "ORDER BY rowid",
            (attacker_address, tick),
        )
        return [_battle(r) for r in rows]

    async def list_battles(self) -> list[Battle]:
        rows = await self._fetchall(f"SELECT {_BATTLE_COLUMNS} FROM battles ORDER BY rowid")
        return [_battle(r) for r in rows]

    async def delete_expired_battles(self, tick: int) -> int:
        return await self._write("DELETE FROM battles WHERE cooldown_end <= ?", (tick,))

    # -- Actions ---------------------------------------------------------

    async def insert_action(self, address: str, tick: int, action_type: ActionType, payload: Payload) -> Action:
        data = encode_payload(payload)
        action = Action(id=_new_id(), town_address=address, tick=tick, type=action_type, data=data)
        await self._write(
            "INSERT INTO actions (id, town_address, tick, type, data) VALUES (?, ?, ?, ?, ?)",
            (action.id, address, tick, int(action_type), json.dumps(data) if data is not None else None),
        )
        return action

    async def list_actions_at(self, address: str, tick: int) -> list[Action]:
        """Actions of a town scheduled exactly at ``tick``, in queue order."""
        rows = await self._fetchall(
            "SELECT id, town_address, tick, type, data FROM actions "
            "WHERE town_address = ? AND tick = ? ORDER BY rowid",
            (address, tick),
        )
        return [_action(r) for r in rows]

    async def list_town_actions(self, address: str) -> list[Action]:
        rows = await self._fetchall(
            "SELECT id, town_address, tick, type, data FROM actions "
            "WHERE town_address = ? ORDER BY tick, rowid",
            (address,),
        )
        return [_action(r) for r in rows]

    async def has_action_of_type(self, address: str, action_type: ActionType) -> bool:
        row = await self._fetchone(
            "SELECT 1 FROM actions WHERE town_address = ? AND type = ? LIMIT 1",
            (address, int(action_type)),
        )
        return row is not None

    async def delete_action(self, action_id: str) -> bool:
        return await self._write("DELETE FROM actions WHERE id = ?", (action_id,)) > 0

    # -- Town errors -----------------------------------------------------

    async def insert_town_error(self, address: str, message: str, tick: int) -> None:
        await self._write(
            "INSERT INTO town_errors (town_address, message, tick) VALUES (?, ?, ?)",
            (address, message, tick),
        )

    async def list_town_errors(self, address: str, limit: int = 10) -> list[dict]:
        """Most recent errors of a town, newest first."""
        rows = await self._fetchall(
            "SELECT message, tick, created_at FROM town_errors "
            "WHERE town_address = ? ORDER BY id DESC LIMIT ?",
            (address, limit),
        )
        return [
            {"message": r[0], "tick": r[1], "created_at": str(r[2]) if r[2] else ""}
            for r in rows
        ]

    async def delete_town_errors_older_than(self, days: int) -> int:
        return await self._write(
            "DELETE FROM town_errors WHERE created_at < datetime('now', ?)",
            (f"-{int(days)} days",),
        )
