"""Notifier — fire-and-forget messages to town channels.

Delivery is pluggable through the ``MessageSender`` protocol.  A failed
delivery is logged and never propagates into game processing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from townwars.persistence.database import Database

log = logging.getLogger(__name__)

FEED_PREFIX = "📢 "


class MessageSender(Protocol):
    """Outbound message transport."""

    async def send_to_channel(self, channel_id: str, text: str) -> None: ...


class LogMessageSender:
    """Default sender: writes every message to the log."""

    async def send_to_channel(self, channel_id: str, text: str) -> None:
        log.info("[%s] %s", channel_id, text)


class Notifier:
    """Channel messages and the global feed.

    Args:
        database: Entity store, used to find every town's channel.
        sender: Transport; defaults to LogMessageSender.
    """

    def __init__(self, database: Database, sender: MessageSender | None = None) -> None:
        self._db = database
        self._sender: MessageSender = sender or LogMessageSender()

    async def channel(self, channel_id: str, text: str) -> None:
        """Send a message to a single channel."""
        try:
            await self._sender.send_to_channel(channel_id, text)
        except Exception:
            log.exception("Failed to send channel message to %s", channel_id)

    async def feed(self, text: str) -> int:
        """Broadcast to every engaged channel.

        Returns:
            Number of channels that accepted the message.
        """
        try:
            channel_ids = await self._db.list_channel_ids()
        except Exception:
            log.exception("Failed to send global feed message")
            return 0

        delivered = 0
        for channel_id in channel_ids:
            try:
                await self._sender.send_to_channel(channel_id, FEED_PREFIX + text)
                delivered += 1
            except Exception:
                log.exception("Failed to send feed message to %s", channel_id)
        return delivered
