"""Action models — queued player intents and their typed payloads.

Every action kind carries its own payload dataclass.  Payloads are
stored as JSON and decoded exhaustively by ``decode_payload``; an
action whose stored data does not match its kind fails to decode.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import IntEnum
from typing import Any, Optional, Union


class ActionType(IntEnum):
    """Queued action kinds (stored values are part of the database format)."""

    BATTLE = 0
    UPGRADE_RESOURCE = 1
    BUY_RESOURCE = 2
    BOOST = 3
    SHIELD = 4
    LEVEL_UP_REQUEST = 5
    LEVEL_UP_APPROVAL = 6
    LEVEL_UP_CANCEL = 7
    COLLECT = 8

    @property
    def label(self) -> str:
        """CamelCase name used in log and error messages."""
        return "".join(part.capitalize() for part in self.name.split("_"))


# Execution priority within one tick; equal values keep queue order.
ACTION_PRIORITY: dict[ActionType, int] = {
    ActionType.LEVEL_UP_REQUEST: 1,
    ActionType.LEVEL_UP_CANCEL: 2,
    ActionType.LEVEL_UP_APPROVAL: 2,
    ActionType.BUY_RESOURCE: 3,
    ActionType.UPGRADE_RESOURCE: 4,
    ActionType.COLLECT: 5,
    ActionType.BOOST: 6,
    ActionType.SHIELD: 6,
    ActionType.BATTLE: 7,
}


# -- Payloads ------------------------------------------------------------

@dataclass(frozen=True)
class NoPayload:
    """Boost, shield and level-up actions carry no data."""


@dataclass(frozen=True)
class BuyResourcePayload:
    resource_type: int


@dataclass(frozen=True)
class ResourcePayload:
    """Upgrade and collect actions target an existing resource."""

    resource_id: str


@dataclass(frozen=True)
class BattlePayload:
    target_address: str


Payload = Union[NoPayload, BuyResourcePayload, ResourcePayload, BattlePayload]


def encode_payload(payload: Payload) -> Optional[dict[str, Any]]:
    """Turn a payload into its JSON-compatible stored form."""
    if isinstance(payload, NoPayload):
        return None
    return asdict(payload)


def decode_payload(action_type: ActionType, raw: Optional[dict[str, Any]]) -> Payload:
    """Build the typed payload for ``action_type`` from stored data.

    Raises:
        ValueError: If the stored data does not fit the action kind.
    """
    if action_type == ActionType.BATTLE:
        target = (raw or {}).get("target_address")
        if not isinstance(target, str) or not target:
            raise ValueError(f"Battle action needs a target_address, got {raw!r}")
        return BattlePayload(target_address=target)

    if action_type == ActionType.BUY_RESOURCE:
        resource_type = (raw or {}).get("resource_type")
        if isinstance(resource_type, bool) or not isinstance(resource_type, int):
            raise ValueError(f"BuyResource action needs an integer resource_type, got {raw!r}")
        return BuyResourcePayload(resource_type=resource_type)

    if action_type in (ActionType.UPGRADE_RESOURCE, ActionType.COLLECT):
        resource_id = (raw or {}).get("resource_id")
        if not isinstance(resource_id, str) or not resource_id:
            raise ValueError(f"{action_type.label} action needs a resource_id, got {raw!r}")
        return ResourcePayload(resource_id=resource_id)

    if action_type in (
        ActionType.BOOST,
        ActionType.SHIELD,
        ActionType.LEVEL_UP_REQUEST,
        ActionType.LEVEL_UP_APPROVAL,
        ActionType.LEVEL_UP_CANCEL,
    ):
        return NoPayload()

    raise ValueError(f"Unknown action type: {action_type!r}")


# -- Action --------------------------------------------------------------

@dataclass
class Action:
    """A queued player intent.

    Attributes:
        id: Unique action id.
        town_address: Owning town.
        tick: Tick at which the action executes.
        type: Action kind.
        data: Stored JSON payload; see ``payload`` for the typed view.
    """

    id: str
    town_address: str
    tick: int
    type: ActionType
    data: Optional[dict[str, Any]] = None

    @property
    def payload(self) -> Payload:
        """Typed payload decoded from the stored data.

        Raises:
            ValueError: If the stored data does not fit the action kind.
        """
        return decode_payload(self.type, self.data)

    @property
    def priority(self) -> int:
        return ACTION_PRIORITY.get(self.type, 99)


@dataclass(frozen=True)
class ActionResult:
    """Outcome of executing one action.

    Attributes:
        success: Whether the action took effect.
        message: Human-readable summary, logged on failure.
        channel_message: Optional message for the owning town's channel.
        feed_message: Optional message for the global feed.
    """

    success: bool
    message: str
    channel_message: Optional[str] = None
    feed_message: Optional[str] = None

    @classmethod
    def fail(cls, message: str) -> ActionResult:
        return cls(success=False, message=message)
