"""Tests for attack validation, battle initiation and treasury settlement.

Level 1 attackers: 10 HP / 5 DPS per troop, attack cost 50, one-round
attacks, post-battle cooldown rolled in [3, 6].  A level-0 cannon has
100 HP and deals 10 per round.
"""

import pytest

from townwars.models.actions import Action, NoPayload
from townwars.models.battle import Battle
from townwars.models.buff import BuffKind

from conftest import make_town

CANNON = 1
TICK = 10


async def _setup(services, db, *, troops=50, attacker_treasury=1000, defender_treasury=800,
                 cannons=1):
    await make_town(services, "att", coins=100, troops=troops, treasury=attacker_treasury)
    await make_town(services, "def", coins=0, treasury=defender_treasury)
    for _ in range(cannons):
        await db.insert_resource("def", CANNON, 0)


# ── Attackability ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_active_shield_blocks_attack(services):
    await make_town(services, "def")
    await services.buffs.create_buff(BuffKind.SHIELD, "def", TICK, 3, 6)
    assert await services.battles.can_be_attacked("def", TICK) is False
    assert await services.battles.can_be_attacked("def", TICK + 2) is False


@pytest.mark.asyncio
async def test_shield_cooldown_does_not_protect(services):
    await make_town(services, "def")
    await services.buffs.create_buff(BuffKind.SHIELD, "def", TICK, 3, 6)
    assert await services.battles.can_be_attacked("def", TICK + 3) is True


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["attacker", "defender"])
async def test_unexpired_battle_blocks_attack(services, db, role):
    await make_town(services, "x")
    await make_town(services, "y")
    attacker, defender = ("x", "y") if role == "attacker" else ("y", "x")
    await db.insert_battle(Battle(id="b", attacker_address=attacker, defender_address=defender,
                                  start=TICK, end=TICK + 1, cooldown_end=TICK + 5))
    assert await services.battles.can_be_attacked("x", TICK + 4) is False
    assert await services.battles.can_be_attacked("x", TICK + 5) is True


# ── Initiation ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_initiate_battle_success(services, db):
    await _setup(services, db)

    battle, result = await services.battles.initiate_battle("att", "def", TICK)

    assert result.success
    assert battle.success is True
    assert battle.percentage == 100
    assert battle.start == TICK
    assert battle.end == TICK + 1
    assert TICK + 1 + 3 <= battle.cooldown_end <= TICK + 1 + 6
    assert battle.reward == 400
    assert battle.penalty == 250

    attacker = await services.towns.get_town("att")
    assert attacker.troops == 0
    assert attacker.coins == 50
    assert (await db.get_battle(battle.id)) == battle


@pytest.mark.asyncio
async def test_cooldown_roll_is_reproducible(services, db):
    import random

    await _setup(services, db)
    services.battles._rng = random.Random(1)
    expected = random.Random(1).randint(3, 6)

    battle, _ = await services.battles.initiate_battle("att", "def", TICK)

    assert battle.cooldown_end == battle.end + expected


@pytest.mark.asyncio
async def test_cannot_attack_self(services, db):
    await _setup(services, db)
    battle, result = await services.battles.initiate_battle("att", "att", TICK)
    assert battle is None
    assert result.message == "You cannot attack yourself"


@pytest.mark.asyncio
async def test_unknown_target(services, db):
    await _setup(services, db)
    battle, result = await services.battles.initiate_battle("att", "nobody", TICK)
    assert battle is None
    assert "Target town not found" in result.message


@pytest.mark.asyncio
async def test_not_enough_coins(services, db):
    await _setup(services, db)
    await services.towns.update_town("att", coins=49)
    battle, result = await services.battles.initiate_battle("att", "def", TICK)
    assert battle is None
    assert "Not enough coins" in result.message
    assert (await services.towns.get_town("att")).troops == 50


@pytest.mark.asyncio
async def test_no_troops(services, db):
    await _setup(services, db, troops=0)
    battle, result = await services.battles.initiate_battle("att", "def", TICK)
    assert battle is None
    assert result.message == "You need troops to attack"


@pytest.mark.asyncio
async def test_shielded_target(services, db):
    await _setup(services, db)
    await services.buffs.create_buff(BuffKind.SHIELD, "def", TICK - 1, 3, 6)
    battle, result = await services.battles.initiate_battle("att", "def", TICK)
    assert battle is None
    assert not result.success
    attacker = await services.towns.get_town("att")
    assert (attacker.troops, attacker.coins) == (50, 100)


@pytest.mark.asyncio
async def test_execute_battle_actions_consumes_queue(services, db):
    await _setup(services, db)
    await services.queue.queue_battle("att", TICK, "def")
    await services.queue.queue_battle("att", TICK, "def")  # troops already spent
    actions = await services.queue.dequeue("att", TICK)

    results = await services.battles.execute_battle_actions("att", actions, TICK)

    assert [r.success for r in results] == [True, False]
    assert await services.queue.dequeue("att", TICK) == []
    assert len(await db.list_battles()) == 1
    errors = await services.errors.get_town_errors("att")
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_battle_action_with_mismatched_payload_fails(services, db, monkeypatch):
    await _setup(services, db)
    await services.queue.queue_battle("att", TICK, "def")
    actions = await services.queue.dequeue("att", TICK)
    monkeypatch.setattr(Action, "payload", property(lambda self: NoPayload()))

    [result] = await services.battles.execute_battle_actions("att", actions, TICK)

    assert not result.success
    assert "Expected a Battle payload" in result.message
    assert await db.list_battles() == []
    assert await services.queue.dequeue("att", TICK) == []


# ── Resolution ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_resolve_success_transfers_scaled_reward(services, db):
    await _setup(services, db)
    await db.insert_battle(Battle(id="b", attacker_address="att", defender_address="def",
                                  start=TICK, end=TICK + 1, cooldown_end=TICK + 4,
                                  reward=400, penalty=250, success=True, percentage=75))

    results = await services.battles.resolve_battles("att", TICK + 1)

    assert len(results) == 1
    assert (await services.towns.get_town("att")).treasury == 1300
    assert (await services.towns.get_town("def")).treasury == 500


@pytest.mark.asyncio
async def test_resolve_failure_transfers_penalty(services, db):
    await _setup(services, db)
    await db.insert_battle(Battle(id="b", attacker_address="att", defender_address="def",
                                  start=TICK, end=TICK + 1, cooldown_end=TICK + 4,
                                  reward=400, penalty=250, success=False, percentage=0))

    await services.battles.resolve_battles("att", TICK + 1)

    assert (await services.towns.get_town("att")).treasury == 750
    assert (await services.towns.get_town("def")).treasury == 1050


@pytest.mark.asyncio
async def test_treasury_never_negative(services, db):
    await _setup(services, db)
    await db.insert_battle(Battle(id="b", attacker_address="att", defender_address="def",
                                  start=TICK, end=TICK + 1, cooldown_end=TICK + 4,
                                  reward=400, penalty=250, success=False))
    await services.towns.update_town("att", treasury=100)

    await services.battles.resolve_battles("att", TICK + 1)

    assert (await services.towns.get_town("att")).treasury == 0
    assert (await services.towns.get_town("def")).treasury == 1050


@pytest.mark.asyncio
async def test_resolution_only_at_end_tick_and_from_attacker(services, db):
    await _setup(services, db)
    await db.insert_battle(Battle(id="b", attacker_address="att", defender_address="def",
                                  start=TICK, end=TICK + 1, cooldown_end=TICK + 4,
                                  reward=400, success=True, percentage=100))

    assert await services.battles.resolve_battles("att", TICK) == []
    assert await services.battles.resolve_battles("def", TICK + 1) == []
    assert await services.battles.resolve_battles("att", TICK + 2) == []
    assert (await services.towns.get_town("def")).treasury == 800
