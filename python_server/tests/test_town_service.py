"""Tests for town lifecycle, balance arithmetic and status snapshots."""

import pytest

from townwars.errors import GameError, TownNotFound
from townwars.models.battle import Battle
from townwars.models.buff import BuffKind
from townwars.util.format import format_dollars, tip_to_coins

from conftest import make_town


# ── Lifecycle ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_new_town_defaults(services):
    town = await services.towns.create_town("0xabc", "ch-1", "", 4)
    assert town.name == "Unknown"
    assert town.level == 0
    assert town.requested_level == 1
    assert town.has_pending_level_up
    assert town.coins == 300
    assert (town.troops, town.treasury, town.last_processed_tick) == (0, 0, 0)
    assert town.leveled_up_at == 4


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(services):
    town, is_new = await services.towns.get_or_create_town("a", "ch", "Alpha", 0)
    assert is_new
    again, is_new = await services.towns.get_or_create_town("a", "other", "Other", 5)
    assert not is_new
    assert again == town


@pytest.mark.asyncio
async def test_update_missing_town_raises(services):
    with pytest.raises(TownNotFound):
        await services.towns.update_town("ghost", coins=1)
    with pytest.raises(TownNotFound):
        await services.towns.add_coins("ghost", 1)


@pytest.mark.asyncio
async def test_delete_town(services, db):
    await make_town(services, "a")
    await db.insert_resource("a", 3, 0)
    assert await services.towns.delete_town("a") is True
    assert await services.towns.get_town("a") is None
    assert await db.list_town_resources("a") == []
    assert await services.towns.delete_town("a") is False


# ── Balances ────────────────────────────────────────────────

class TestTroops:
    @pytest.mark.asyncio
    async def test_capped_at_level_max(self, services):
        await make_town(services, "a", troops=45)
        town, added = await services.towns.add_troops("a", 10)
        assert (town.troops, added) == (50, 5)

    @pytest.mark.asyncio
    async def test_full_pool_discards_everything(self, services):
        await make_town(services, "a", troops=50)
        town, added = await services.towns.add_troops("a", 4)
        assert (town.troops, added) == (50, 0)

    @pytest.mark.asyncio
    async def test_never_reduces_an_overfull_pool(self, services):
        await make_town(services, "a", troops=70)
        town, added = await services.towns.add_troops("a", 4)
        assert (town.troops, added) == (70, 0)


@pytest.mark.asyncio
async def test_add_coins_accepts_debits(services):
    await make_town(services, "a", coins=100)
    town = await services.towns.add_coins("a", -40)
    assert town.coins == 60


# ── Level up ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_level_up_applies_grant_and_allocation(services):
    await services.towns.create_town("a", "ch", "Alpha", 0)

    town = await services.towns.level_up("a", 7)

    assert town.level == 1
    assert town.requested_level == 1
    assert town.leveled_up_at == 7
    assert town.treasury == 1000
    assert town.coins == 600
    assert not town.has_pending_level_up


@pytest.mark.asyncio
async def test_level_up_without_request(services):
    await make_town(services, "a", level=1)
    with pytest.raises(GameError):
        await services.towns.level_up("a", 1)


@pytest.mark.asyncio
async def test_level_up_missing_town(services):
    with pytest.raises(TownNotFound):
        await services.towns.level_up("ghost", 1)


# ── Tips and formatting ─────────────────────────────────────

@pytest.mark.parametrize("eth, coins", [
    (0.0005, 90),     # ~$1.66
    (0.0015, 490),    # ~$4.98
    (0.0030, 990),    # ~$9.96
])
def test_tip_buckets(eth, coins):
    assert tip_to_coins(eth) == coins


@pytest.mark.asyncio
async def test_add_tip_credits_coins(services):
    await make_town(services, "a", coins=10)
    town, coins = await services.towns.add_tip("a", 0.0015)
    assert coins == 490
    assert town.coins == 500


@pytest.mark.parametrize("cents, text", [(0, "$0.00"), (5, "$0.05"), (123456, "$1234.56")])
def test_format_dollars(cents, text):
    assert format_dollars(cents) == text


# ── Snapshot ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_quiet_town_state(services):
    town = await make_town(services, "a")
    state = await services.towns.town_state(town, 10)
    assert state.battle is None and state.shield is None and state.boost is None
    assert not any([state.battle_active, state.shield_active, state.boost_active,
                    state.celebrating])
    assert state.boost_multiplier == 1.0


@pytest.mark.asyncio
async def test_state_flags_follow_buff_phases(services):
    town = await make_town(services, "a")
    await services.buffs.create_buff(BuffKind.SHIELD, "a", 10, 3, 6)
    await services.buffs.create_buff(BuffKind.BOOST, "a", 8, 3, 5)

    state = await services.towns.town_state(town, 12)

    assert state.shield_active and not state.shield_cooldown
    assert state.boost_cooldown and not state.boost_active
    assert state.boost_multiplier == 1.0


@pytest.mark.asyncio
async def test_active_boost_exposes_multiplier(services):
    town = await make_town(services, "a")
    await services.buffs.create_buff(BuffKind.BOOST, "a", 10, 3, 5)
    state = await services.towns.town_state(town, 11)
    assert state.boost_multiplier == 2.0


@pytest.mark.asyncio
async def test_state_battle_phase(services, db):
    town = await make_town(services, "a")
    await make_town(services, "b")
    await db.insert_battle(Battle(id="b1", attacker_address="b", defender_address="a",
                                  start=10, end=12, cooldown_end=16))

    assert (await services.towns.town_state(town, 11)).battle_active
    assert (await services.towns.town_state(town, 12)).battle_summary
    assert (await services.towns.town_state(town, 14)).battle_cooldown
    assert (await services.towns.town_state(town, 16)).battle is None


@pytest.mark.asyncio
async def test_celebrating_only_on_level_up_tick(services):
    await services.towns.create_town("a", "ch", "Alpha", 0)
    town = await services.towns.level_up("a", 5)
    assert (await services.towns.town_state(town, 5)).celebrating
    assert not (await services.towns.town_state(town, 6)).celebrating
