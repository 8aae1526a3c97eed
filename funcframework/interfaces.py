"""Core data models for the functions framework.

This module defines the registered-function record shared by the registry and
the dispatcher, and the legacy "background event" envelope that the event
normalizer parses out of request bodies.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from funcframework.exceptions import FunctionsFrameworkError


class FunctionKind(str, Enum):
    """Kinds of user functions the framework knows how to invoke."""

    HTTP = "http"
    CLOUD_EVENT = "cloudevent"
    EVENT = "event"
    TYPED = "typed"


class RegisteredFunction(BaseModel):
    """A user callback registered with the framework.

    Exactly one of the callback fields is set; ``kind`` reports which one.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field("", description="Function name used for target selection")
    path: str = Field("", description="Path the function is served at")
    http_fn: Optional[Callable[..., Any]] = None
    cloud_event_fn: Optional[Callable[..., Any]] = None
    event_fn: Optional[Callable[..., Any]] = None
    typed_fn: Optional[Callable[..., Any]] = None

    @property
    def kind(self) -> FunctionKind:
        """Return the kind of the single callback that is set.

        Raises:
            FunctionsFrameworkError: If zero or several callbacks are set
        """
        entries = {
            FunctionKind.HTTP: self.http_fn,
            FunctionKind.CLOUD_EVENT: self.cloud_event_fn,
            FunctionKind.EVENT: self.event_fn,
            FunctionKind.TYPED: self.typed_fn,
        }
        kinds = [kind for kind, fn in entries.items() if fn is not None]
        if len(kinds) != 1:
            raise FunctionsFrameworkError(
                f"missing function entry for {self.name or self.path!r}"
            )
        return kinds[0]

    @property
    def callback(self) -> Callable[..., Any]:
        """Return the user callback, whatever its kind."""
        return {
            FunctionKind.HTTP: self.http_fn,
            FunctionKind.CLOUD_EVENT: self.cloud_event_fn,
            FunctionKind.EVENT: self.event_fn,
            FunctionKind.TYPED: self.typed_fn,
        }[self.kind]


class Resource(BaseModel):
    """Resource that emitted a background event.

    Background events carry either a structured resource or a bare path
    string; the latter is kept in ``raw_path``.
    """

    model_config = ConfigDict(populate_by_name=True)

    service: str = ""
    name: str = ""
    type: str = ""
    raw_path: str = Field("", exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _accept_raw_path(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"raw_path": value}
        return value

    def to_wire(self) -> Union[str, Dict[str, str]]:
        """Return the JSON form used in a background event envelope."""
        if self.raw_path and not (self.service or self.name or self.type):
            return self.raw_path
        return {
            key: value
            for key, value in (
                ("service", self.service),
                ("name", self.name),
                ("type", self.type),
            )
            if value
        }


class Metadata(BaseModel):
    """Background event metadata (the ``context`` of an envelope)."""

    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field("", alias="eventId")
    timestamp: Optional[datetime] = None
    event_type: str = Field("", alias="eventType")
    resource: Optional[Resource] = None

    def to_wire(self) -> Dict[str, Any]:
        """Return the JSON form used in a background event envelope."""
        wire: Dict[str, Any] = {
            "eventId": self.event_id,
            "eventType": self.event_type,
        }
        if self.timestamp is not None:
            wire["timestamp"] = format_rfc3339(self.timestamp)
        if self.resource is not None:
            wire["resource"] = self.resource.to_wire()
        return wire


class BackgroundEvent(BaseModel):
    """Legacy event envelope: ``{"context": {...}, "data": ...}``."""

    model_config = ConfigDict(populate_by_name=True)

    metadata: Optional[Metadata] = Field(None, alias="context")
    data: Any = None


def format_rfc3339(value: datetime) -> str:
    """Format a timestamp as RFC 3339, using ``Z`` for UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if not value.microsecond:
        timespec = "seconds"
    elif value.microsecond % 1000 == 0:
        timespec = "milliseconds"
    else:
        timespec = "microseconds"
    text = value.isoformat(timespec=timespec)
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text
