from __future__ import annotations

"""Generation stream events and their text/event-stream wire framing.

Each frame is ``data: <json>\\n\\n``; the JSON object is tagged by which
field is present (``delta``, ``building``, ``codePushed``, ``error``). A
normal stream ends with the ``data: [DONE]`` sentinel; a failed stream ends
with its error frame instead.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ExtractionStarted:
    pass


@dataclass(frozen=True)
class DeliveryOutcome:
    pushed: bool


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class StreamError:
    message: str


StreamEvent = Union[TextDelta, ExtractionStarted, DeliveryOutcome, Done, StreamError]


def to_wire(event: StreamEvent) -> Optional[Dict[str, Any]]:
    """JSON body for an event; ``None`` for the sentinel-framed ``Done``."""
    if isinstance(event, TextDelta):
        return {"delta": event.text}
    if isinstance(event, ExtractionStarted):
        return {"building": True}
    if isinstance(event, DeliveryOutcome):
        return {"codePushed": event.pushed}
    if isinstance(event, StreamError):
        return {"error": event.message}
    if isinstance(event, Done):
        return None
    raise TypeError(f"Unknown stream event: {event!r}")


def encode_frame(event: StreamEvent) -> str:
    body = to_wire(event)
    if body is None:
        return f"data: {DONE_SENTINEL}\n\n"
    return f"data: {json.dumps(body)}\n\n"


def decode_payload(payload: str) -> Optional[StreamEvent]:
    """Parse the text after ``data:`` back into an event.

    Unknown or malformed payloads return ``None`` so consumers can skip them.
    """
    payload = payload.strip()
    if payload == DONE_SENTINEL:
        return Done()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    if "error" in data and data["error"]:
        return StreamError(message=str(data["error"]))
    if "delta" in data and isinstance(data["delta"], str):
        return TextDelta(text=data["delta"])
    if data.get("building"):
        return ExtractionStarted()
    if "codePushed" in data:
        return DeliveryOutcome(pushed=bool(data["codePushed"]))
    if data.get("done"):
        return Done()
    return None
