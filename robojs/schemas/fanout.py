from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, Field

EntityKind = Literal["collection", "task", "result", "notification", "user"]
Action = Literal["insert", "update", "delete"]


class FanoutEvent(BaseModel):
    type: EntityKind
    action: Action
    payload: Dict[str, Any] = Field(default_factory=dict)


class PublishRequest(BaseModel):
    """Body of POST /internal/events (worker process -> api process)."""

    user_id: str
    event: FanoutEvent


class ControlMessage(BaseModel):
    """Client -> server: authenticate | close."""

    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
