"""Pydantic request/response models for the REST admin API.

These models define the HTTP request bodies and response shapes.
They are intentionally separate from the engine dataclasses so the
storage layout can change without breaking clients.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ===================================================================
# Status
# ===================================================================


class StatusResponse(BaseModel):
    current_tick: int
    completed_tick: int
    towns: int
    tick_interval_seconds: float
    loop_running: bool = False
    loop_ticks: int = 0
    loop_failures: int = 0
    last_tick_duration_ms: float = 0.0
    avg_tick_duration_ms: float = 0.0
    uptime_seconds: float = 0.0


# ===================================================================
# Towns
# ===================================================================


class EngageRequest(BaseModel):
    address: str = Field(min_length=1)
    channel_id: str = ""
    name: str = ""


class TownSummary(BaseModel):
    address: str
    channel_id: str
    name: str
    level: int
    requested_level: int
    leveled_up_at: int
    coins: int
    troops: int
    treasury: int
    last_processed_tick: int


class EngageResponse(BaseModel):
    success: bool
    is_new: bool = False
    town: Optional[TownSummary] = None


class TownStateResponse(BaseModel):
    tick: int
    town: TownSummary
    treasury_display: str
    max_troops: int
    resources: List[Dict[str, Any]] = []
    battle: Optional[Dict[str, Any]] = None
    shield: Optional[Dict[str, Any]] = None
    boost: Optional[Dict[str, Any]] = None
    flags: Dict[str, bool] = {}
    boost_multiplier: float = 1.0
    pending_actions: List[Dict[str, Any]] = []


# ===================================================================
# Actions
# ===================================================================


class QueueActionRequest(BaseModel):
    """Queue an action for the next tick.

    ``action`` is the snake_case action name, e.g. ``buy_resource``,
    ``collect``, ``shield``, ``level_up_request`` or ``battle``.
    """

    action: str
    resource_type: Optional[int] = None
    resource_id: Optional[str] = None
    target_address: Optional[str] = None


class QueueActionResponse(BaseModel):
    success: bool
    error: str = ""
    action_id: str = ""
    tick: int = 0


class TipRequest(BaseModel):
    eth_amount: float = Field(gt=0)


class TipResponse(BaseModel):
    success: bool
    coins_added: int = 0
    coins: int = 0


# ===================================================================
# Tick
# ===================================================================


class TickResponse(BaseModel):
    tick: int
    resumed: bool = False
    expired_removed: int = 0
    towns_processed: int = 0
    towns_skipped: int = 0
    towns_failed: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    battles_started: int = 0
    battles_resolved: int = 0
    duration_ms: float = 0.0
    errors: List[str] = []
