from __future__ import annotations

"""Incremental decoder for the ``/api/chat`` event stream."""

import codecs
import logging
from typing import List, Union

from ..domain.events import StreamEvent, decode_payload


logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"


class FrameDecoder:
    """Turns arbitrarily split network chunks into stream events.

    A frame may arrive split anywhere (even inside a multi-byte character);
    incomplete lines stay buffered until the rest shows up.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._decode_lines(lines)

    def close(self) -> List[StreamEvent]:
        """Flush whatever is left once the connection has ended."""
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        return self._decode_lines([tail]) if tail.strip() else []

    @property
    def pending(self) -> str:
        return self._buffer

    def _decode_lines(self, lines: List[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            event = decode_payload(line[len(DATA_PREFIX):])
            if event is None:
                logger.debug("Skipping malformed frame: %.80s", line)
                continue
            events.append(event)
        return events
