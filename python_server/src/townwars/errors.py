"""Exception types raised by the tick engine.

Expected rule violations (not enough coins, at cap, ...) are never raised;
they come back as a failed ``ActionResult``.  These exceptions cover
missing entities and broken configuration.
"""

from __future__ import annotations


class GameError(Exception):
    """Base class for all engine errors."""


class TownNotFound(GameError):
    """No town exists for the given address."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Town not found: {address}")
        self.address = address


class ResourceNotFound(GameError):
    """No resource instance exists for the given id."""

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"Resource not found: {resource_id}")
        self.resource_id = resource_id


class StaticDataError(GameError):
    """The static game tables are missing or inconsistent."""
