from __future__ import annotations

"""Blocking chat client that drives one exchange at a time against ``/api/chat``.

The stale-connection watchdog is the read timeout of the streaming request:
it restarts on every chunk, and expiring means the stream stalled. Waiting on
delivery has its own bound: a timer closes the stream once it runs out, and
every chunk is checked against it before its events are applied.
"""

from threading import Event, Lock, Timer
from typing import Any, Callable, Dict, List, Optional
import logging
import time

import requests
from urllib3.exceptions import ReadTimeoutError

from ..domain.conversation import trim_history
from ..domain.events import StreamError
from .exchange import (
    Abort,
    ErrorKind,
    Exchange,
    ExchangeEvent,
    Phase,
    Stall,
    Submitted,
    Tick,
    WORKING_TIMEOUT_SECONDS,
    start,
    transition,
)
from .sse import FrameDecoder


logger = logging.getLogger(__name__)

Listener = Callable[[Exchange], None]


class ExchangeInFlight(RuntimeError):
    pass


class ChatClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        chat_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
        connect_timeout: float = 5.0,
        stall_timeout: float = 45.0,
        working_timeout: float = WORKING_TIMEOUT_SECONDS,
        workspace_context: Optional[List[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.chat_id = chat_id
        self.workspace_context = workspace_context
        self._token = token
        self._session = session or requests.Session()
        self._timeout = (connect_timeout, stall_timeout)
        self._working_timeout = working_timeout
        self._clock = clock
        self._in_flight = Lock()
        self._abort = Event()
        self._working_expired = Event()
        self._working_timer: Optional[Timer] = None
        self._response: Optional[requests.Response] = None
        self.history: List[Dict[str, str]] = []
        self.last_exchange: Optional[Exchange] = None

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def send(self, message: str, on_update: Optional[Listener] = None) -> Exchange:
        """Run one exchange to completion and return its final state.

        Raises ``ExchangeInFlight`` if another exchange is still streaming
        and ``ValueError`` for a blank message.
        """
        text = message.strip()
        if not text:
            raise ValueError("message is required")
        if not self._in_flight.acquire(blocking=False):
            raise ExchangeInFlight("an exchange is already in flight")
        try:
            self._abort.clear()
            self._working_expired.clear()
            state = start(text, working_timeout=self._working_timeout)
            state = self._apply(state, Submitted(), on_update)
            self._persist("user", text)
            state = self._stream(state, on_update)
            self._finish(state)
            return state
        finally:
            self._cancel_working_timer()
            self._response = None
            self._in_flight.release()

    def retry_last(self, on_update: Optional[Listener] = None) -> Exchange:
        """Re-submit the last user message after a failed exchange."""
        last = self.last_exchange
        if last is None or not last.retryable:
            raise RuntimeError("nothing to retry")
        return self.send(last.user_message, on_update)

    def abort(self) -> None:
        """Stop the in-flight stream; text received so far is kept."""
        self._abort.set()
        response = self._response
        if response is not None:
            response.close()

    def _apply(self, state: Exchange, event: ExchangeEvent, on_update: Optional[Listener]) -> Exchange:
        new_state = transition(state, event, self._clock())
        if new_state.phase is Phase.WORKING and state.phase is not Phase.WORKING:
            self._start_working_timer(new_state.working_timeout)
        if new_state != state and on_update is not None:
            on_update(new_state)
        return new_state

    def _start_working_timer(self, seconds: float) -> None:
        """Close the stream if no delivery outcome arrives within ``seconds``."""
        self._cancel_working_timer()
        timer = Timer(seconds, self._expire_working)
        timer.daemon = True
        self._working_timer = timer
        timer.start()

    def _cancel_working_timer(self) -> None:
        if self._working_timer is not None:
            self._working_timer.cancel()
            self._working_timer = None

    def _expire_working(self) -> None:
        self._working_expired.set()
        response = self._response
        if response is not None:
            response.close()

    def _closed_by_us(self) -> bool:
        return self._abort.is_set() or self._working_expired.is_set()

    def _stream(self, state: Exchange, on_update: Optional[Listener]) -> Exchange:
        body: Dict[str, Any] = {"message": state.user_message, "conversationHistory": list(self.history)}
        if self.workspace_context is not None:
            body["workspaceContext"] = self.workspace_context
        if self.chat_id:
            body["chat_id"] = self.chat_id

        decoder = FrameDecoder()
        try:
            with self._session.post(
                f"{self.base_url}/api/chat",
                json=body,
                headers=self._headers(),
                stream=True,
                timeout=self._timeout,
            ) as response:
                self._response = response
                if response.status_code != 200:
                    logger.warning("Chat request rejected with HTTP %s", response.status_code)
                    return self._apply(state, StreamError(message=f"HTTP {response.status_code}"), on_update)
                for chunk in response.iter_content(chunk_size=None):
                    if self._closed_by_us():
                        break
                    # the working bound is checked before a late outcome can land
                    state = self._apply(state, Tick(), on_update)
                    if state.finalized:
                        return state
                    for event in decoder.feed(chunk):
                        state = self._apply(state, event, on_update)
                    state = self._apply(state, Tick(), on_update)
                    if state.finalized:
                        return state
        except requests.Timeout:
            return self._apply(state, self._interrupted(), on_update)
        except requests.ConnectionError as exc:
            if self._closed_by_us():
                return self._apply(state, self._interrupted(), on_update)
            if _is_read_timeout(exc):
                return self._apply(state, Stall(), on_update)
            logger.warning("Chat stream dropped: %s", exc)
            return self._apply(state, StreamError(message=str(exc)), on_update)
        except requests.RequestException as exc:
            if self._closed_by_us():
                return self._apply(state, self._interrupted(), on_update)
            logger.warning("Chat request failed: %s", exc)
            return self._apply(state, StreamError(message=str(exc)), on_update)
        except (AttributeError, OSError, ValueError) as exc:
            # urllib3 raises these when the response is closed under a pending read
            if not self._closed_by_us():
                raise
            logger.debug("Chat stream closed mid-read: %r", exc)
            return self._apply(state, self._interrupted(), on_update)

        if self._closed_by_us():
            return self._apply(state, self._interrupted(), on_update)
        for event in decoder.close():
            state = self._apply(state, event, on_update)
        if not state.finalized:
            # connection closed without a terminal frame
            state = self._apply(state, Stall(), on_update)
        return state

    def _interrupted(self) -> ExchangeEvent:
        # an expired working bound closes the stream the same way a stall does
        return Abort() if self._abort.is_set() else Stall()

    def _finish(self, state: Exchange) -> None:
        self.last_exchange = state
        if state.reply is not None:
            self._persist("assistant", state.reply)
        if state.raw_text and state.error_kind is not ErrorKind.GENERATION:
            self.history.append({"role": "user", "content": state.user_message})
            self.history.append({"role": "assistant", "content": state.raw_text})
            self.history = trim_history(self.history)
        logger.info(
            "Exchange finished phase=%s error=%s aborted=%s",
            state.phase.value,
            state.error_kind.value if state.error_kind else None,
            state.aborted,
        )

    def _persist(self, role: str, content: str) -> None:
        """Best-effort write of a finalized turn to the chat's durable history."""
        if not self.chat_id:
            return
        try:
            resp = self._session.post(
                f"{self.base_url}/api/chats/{self.chat_id}/messages",
                json={"role": role, "content": content},
                headers=self._headers(),
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Could not persist %s turn to chat %s: %s", role, self.chat_id, exc)


def _is_read_timeout(exc: requests.ConnectionError) -> bool:
    return any(isinstance(arg, ReadTimeoutError) for arg in exc.args)
