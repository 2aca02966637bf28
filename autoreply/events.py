"""
Lifecycle events emitted by the messaging client.

Every event is a frozen pydantic model tagged by its ``type`` field, so the
whole set can be parsed from plain dicts (file-drop inbox, tests) through a
single discriminated union.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class QrEvent(BaseModel, frozen=True):
    type: Literal["qr"] = "qr"
    payload: str


class ReadyEvent(BaseModel, frozen=True):
    type: Literal["ready"] = "ready"


class AuthenticatedEvent(BaseModel, frozen=True):
    type: Literal["authenticated"] = "authenticated"


class AuthFailureEvent(BaseModel, frozen=True):
    type: Literal["auth_failure"] = "auth_failure"
    info: str = ""


class DisconnectedEvent(BaseModel, frozen=True):
    type: Literal["disconnected"] = "disconnected"
    reason: str = ""


class LoadingScreenEvent(BaseModel, frozen=True):
    type: Literal["loading_screen"] = "loading_screen"
    percent: float = 0
    message: str = ""


class ErrorEvent(BaseModel, frozen=True):
    type: Literal["error"] = "error"
    error: str = ""


class MessageEvent(BaseModel, frozen=True):
    type: Literal["message"] = "message"
    sender_id: str = Field(min_length=1)
    body: str = ""


LifecycleEvent = Annotated[
    Union[
        QrEvent,
        ReadyEvent,
        AuthenticatedEvent,
        AuthFailureEvent,
        DisconnectedEvent,
        LoadingScreenEvent,
        ErrorEvent,
        MessageEvent,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter = TypeAdapter(LifecycleEvent)

EVENT_TYPES = ("qr", "ready", "authenticated", "auth_failure", "disconnected", "loading_screen", "error", "message")


def parse_event(raw: dict[str, Any]) -> LifecycleEvent:
    """Parse a dict into its event model. Raises pydantic.ValidationError on bad input."""
    return _adapter.validate_python(raw)
