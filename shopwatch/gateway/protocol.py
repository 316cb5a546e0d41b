"""Wire format for the local event gateway.

Frames are single lines of JSON: ``{"event": <name>, "data": <payload>}``.
Payload keys are camelCase on the wire and snake_case in Python.
"""
import dataclasses
from typing import Any

import orjson
from pydantic import BaseModel
from pydantic.alias_generators import to_camel, to_snake

# Broadcasts
HEARTBEAT = "heartbeat"
ITEMS_UPDATED = "items-updated"
ITEM_NEW = "item-new"
ERROR = "error"
LOG = "log"

# Requests
FORCE_POLL = "force-poll"
GET_NOTIFICATION_HISTORY = "get-notification-history"
GET_NOTIFICATION_STATS = "get-notification-stats"

# Replies
FORCE_POLL_RECEIVED = "force-poll-received"
FORCE_POLL_RESULT = "force-poll-result"


def result_event(request: str) -> str:
    """Name of the reply event for a request."""
    return f"{request}-result"


class ProtocolError(ValueError):
    """A frame could not be decoded."""


def to_wire(value: Any) -> Any:
    """Convert models, dataclasses and snake_case dict keys into wire form."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)

    if isinstance(value, dict):
        return {to_camel(str(k)): to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    return value


def from_wire(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_snake(str(k)): from_wire(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_wire(v) for v in value]
    return value


def encode_frame(event: str, data: Any = None) -> bytes:
    return orjson.dumps({"event": event, "data": to_wire(data if data is not None else {})}) + b"\n"


def decode_frame(line: bytes) -> tuple[str, dict]:
    """Parse one frame into ``(event, data)`` with snake_case data keys."""
    try:
        frame = orjson.loads(line)
    except orjson.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON frame: {e}") from e

    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise ProtocolError("Frame must be an object with an 'event' name")

    data = frame.get("data") or {}
    if not isinstance(data, dict):
        raise ProtocolError("Frame 'data' must be an object")
    return frame["event"], from_wire(data)
