"""Tests for message delivery and the error sink."""

import pytest

from townwars.engine.error_service import ErrorService
from townwars.engine.notifier import FEED_PREFIX, LogMessageSender, Notifier

from conftest import RecordingSender, make_town


class FlakySender(RecordingSender):
    """Fails for the listed channels, records the rest."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing

    async def send_to_channel(self, channel_id: str, text: str) -> None:
        if channel_id in self.failing:
            raise ConnectionError(f"{channel_id} unreachable")
        await super().send_to_channel(channel_id, text)


@pytest.mark.asyncio
async def test_channel_message(db):
    sender = RecordingSender()
    await Notifier(db, sender).channel("ch-1", "hello")
    assert sender.sent == [("ch-1", "hello")]


@pytest.mark.asyncio
async def test_feed_reaches_each_channel_once(services, db):
    await make_town(services, "a", channel_id="shared")
    await make_town(services, "b", channel_id="shared")
    await make_town(services, "c", channel_id="other")
    sender = RecordingSender()

    delivered = await Notifier(db, sender).feed("news")

    assert delivered == 2
    assert sorted(sender.sent) == [("other", FEED_PREFIX + "news"),
                                   ("shared", FEED_PREFIX + "news")]


@pytest.mark.asyncio
async def test_feed_skips_towns_without_channel(services, db):
    await services.towns.create_town("a", "", "Alpha", 0)
    sender = RecordingSender()
    assert await Notifier(db, sender).feed("news") == 0
    assert sender.sent == []


@pytest.mark.asyncio
async def test_failed_channel_does_not_stop_feed(services, db):
    await make_town(services, "a", channel_id="down")
    await make_town(services, "b", channel_id="up")
    sender = FlakySender({"down"})

    delivered = await Notifier(db, sender).feed("news")

    assert delivered == 1
    assert sender.sent == [("up", FEED_PREFIX + "news")]


@pytest.mark.asyncio
async def test_channel_failure_is_swallowed(db):
    await Notifier(db, FlakySender({"down"})).channel("down", "hello")


@pytest.mark.asyncio
async def test_default_sender_logs(db, caplog):
    caplog.set_level("INFO", logger="townwars.engine.notifier")
    notifier = Notifier(db)
    assert isinstance(notifier._sender, LogMessageSender)
    await notifier.channel("ch-9", "logged")
    assert "[ch-9] logged" in caplog.text


# ── Error sink ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_errors_newest_first_and_limited(services):
    await make_town(services, "a")
    for tick in range(5):
        await services.errors.log_town_error("a", f"error {tick}", tick)

    errors = await services.errors.get_town_errors("a", limit=3)

    assert [e["message"] for e in errors] == ["error 4", "error 3", "error 2"]
    assert errors[0]["tick"] == 4


@pytest.mark.asyncio
async def test_error_sink_never_raises(db):
    class BrokenDatabase:
        async def insert_town_error(self, address, message, tick):
            raise RuntimeError("database is locked")

    await ErrorService(BrokenDatabase()).log_town_error("a", "boom", 1)


@pytest.mark.asyncio
async def test_clear_old_errors_keeps_recent(services):
    await make_town(services, "a")
    await services.errors.log_town_error("a", "fresh", 1)
    assert await services.errors.clear_old_errors(7) == 0
    assert len(await services.errors.get_town_errors("a")) == 1
