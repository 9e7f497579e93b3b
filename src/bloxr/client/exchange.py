from __future__ import annotations

"""State of one chat exchange, from the user's message to its final bubble.

The exchange moves strictly forward::

    USER_RECORDED -> THINKING -> RESPONDING -> [WORKING] -> DONE | ERROR

``transition`` is a pure function: it never mutates the state it is given
and performs no I/O, so the chat client, a UI and the tests all drive the
same rules. Once an exchange reaches DONE or ERROR every further event is
ignored, which is how a late ``DeliveryOutcome`` arriving after a timeout is
kept from turning an error back into a success.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union

from ..domain.events import DeliveryOutcome, Done, ExtractionStarted, StreamError, TextDelta
from ..services.blocks import strip_blocks


WORKING_TIMEOUT_SECONDS = 30.0

GENERATION_FAILED = "Something went wrong. Please try again."
DELIVERY_FAILED = "Couldn't reach Roblox Studio. Make sure the bloxr plugin is running."
DELIVERY_TIMEOUT = "Roblox Studio didn't pick up the change in time. Check that the plugin is connected."


class Phase(str, Enum):
    USER_RECORDED = "user_recorded"
    THINKING = "thinking"
    RESPONDING = "responding"
    WORKING = "working"
    DONE = "done"
    ERROR = "error"


class ErrorKind(str, Enum):
    GENERATION = "generation"
    DELIVERY = "delivery"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Submitted:
    pass


@dataclass(frozen=True)
class Abort:
    pass


@dataclass(frozen=True)
class Tick:
    """Clock advance; only matters while waiting on delivery."""


@dataclass(frozen=True)
class Stall:
    """No chunk arrived within the watchdog interval, or the stream ended early."""


ExchangeEvent = Union[
    Submitted,
    TextDelta,
    ExtractionStarted,
    DeliveryOutcome,
    Done,
    StreamError,
    Abort,
    Tick,
    Stall,
]

_FINAL = (Phase.DONE, Phase.ERROR)


@dataclass(frozen=True)
class Exchange:
    user_message: str
    phase: Phase = Phase.USER_RECORDED
    raw_text: str = ""
    responded: bool = False
    working_since: Optional[float] = None
    working_timeout: float = WORKING_TIMEOUT_SECONDS
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    aborted: bool = False

    @property
    def visible_text(self) -> str:
        return strip_blocks(self.raw_text)

    @property
    def finalized(self) -> bool:
        return self.phase in _FINAL

    @property
    def reply(self) -> Optional[str]:
        """The assistant bubble to render and persist, if there is one.

        Generation failures discard partial text: it may end inside a block
        that was cut off mid-fence.
        """
        if not self.responded or self.error_kind is ErrorKind.GENERATION:
            return None
        text = self.visible_text
        return text or None

    @property
    def retryable(self) -> bool:
        return self.phase is Phase.ERROR


def start(message: str, *, working_timeout: float = WORKING_TIMEOUT_SECONDS) -> Exchange:
    return Exchange(user_message=message, working_timeout=working_timeout)


def _fail(state: Exchange, kind: ErrorKind, message: str) -> Exchange:
    return replace(state, phase=Phase.ERROR, error_kind=kind, error_message=message)


def transition(state: Exchange, event: ExchangeEvent, now: float) -> Exchange:
    if state.finalized:
        return state

    if isinstance(event, Submitted):
        if state.phase is Phase.USER_RECORDED:
            return replace(state, phase=Phase.THINKING)
        return state

    if isinstance(event, TextDelta):
        raw = state.raw_text + event.text
        if state.phase is Phase.THINKING and strip_blocks(raw):
            return replace(state, raw_text=raw, phase=Phase.RESPONDING, responded=True)
        return replace(state, raw_text=raw)

    if isinstance(event, ExtractionStarted):
        if state.phase in (Phase.THINKING, Phase.RESPONDING):
            return replace(state, phase=Phase.WORKING, working_since=now)
        return state

    if isinstance(event, DeliveryOutcome):
        if state.phase is not Phase.WORKING:
            return state
        if event.pushed:
            return replace(state, phase=Phase.DONE)
        return _fail(state, ErrorKind.DELIVERY, DELIVERY_FAILED)

    if isinstance(event, Done):
        if state.phase is Phase.WORKING:
            # the stream finished without ever reporting the enqueue result
            return _fail(state, ErrorKind.TIMEOUT, DELIVERY_TIMEOUT)
        return replace(state, phase=Phase.DONE)

    if isinstance(event, StreamError):
        return _fail(state, ErrorKind.GENERATION, GENERATION_FAILED)

    if isinstance(event, Abort):
        return replace(state, phase=Phase.DONE, aborted=True)

    if isinstance(event, Tick):
        if state.phase is Phase.WORKING and state.working_since is not None:
            if now - state.working_since >= state.working_timeout:
                return _fail(state, ErrorKind.TIMEOUT, DELIVERY_TIMEOUT)
        return state

    if isinstance(event, Stall):
        if state.phase is Phase.WORKING:
            return _fail(state, ErrorKind.TIMEOUT, DELIVERY_TIMEOUT)
        return _fail(state, ErrorKind.GENERATION, GENERATION_FAILED)

    raise TypeError(f"Unknown exchange event: {event!r}")
