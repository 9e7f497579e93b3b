from __future__ import annotations

"""Structured block scanning for generated text.

A structured block is a fenced JSON document::

    ```json
    {"type": "script", "name": "...", ...}
    ```

``scan_blocks`` returns raw bodies in the order they appear; ``strip_blocks``
removes block markup for display, including a block that has been opened
but not closed yet (the tail of a response still streaming in).
"""

import json
import logging
import re
from typing import List, Tuple, Union

from pydantic import ValidationError

from ..domain.models import PartPayload, ScriptPayload, normalize_payload


logger = logging.getLogger(__name__)

OPEN_MARKER = "```json"
CLOSE_MARKER = "```"

_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def scan_blocks(text: str) -> List[str]:
    """Return the bodies of every closed block, in text order."""
    bodies: List[str] = []
    pos = 0
    while True:
        start = text.find(OPEN_MARKER, pos)
        if start == -1:
            break
        body_start = start + len(OPEN_MARKER)
        end = text.find(CLOSE_MARKER, body_start)
        if end == -1:
            # still open
            break
        bodies.append(text[body_start:end].strip())
        pos = end + len(CLOSE_MARKER)
    return bodies


def _strip_once(text: str) -> str:
    parts: List[str] = []
    pos = 0
    while True:
        start = text.find(OPEN_MARKER, pos)
        if start == -1:
            parts.append(text[pos:])
            break
        parts.append(text[pos:start])
        end = text.find(CLOSE_MARKER, start + len(OPEN_MARKER))
        if end == -1:
            break
        pos = end + len(CLOSE_MARKER)
    joined = "".join(parts)
    return _EXCESS_BLANK_LINES.sub("\n\n", joined).strip()


def strip_blocks(text: str) -> str:
    """Visible text with all block markup removed.

    Runs to a fixed point so that ``strip_blocks(strip_blocks(x)) ==
    strip_blocks(x)`` even when removing one block splices marker fragments
    into a new one.
    """
    current = text or ""
    while True:
        stripped = _strip_once(current)
        if stripped == current:
            return stripped
        current = stripped


def parse_block(body: str) -> Union[PartPayload, ScriptPayload]:
    """Parse one raw block body into a payload variant.

    Raises ``ValueError`` on invalid JSON or a document that matches neither
    variant.
    """
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc.msg}") from exc
    try:
        return normalize_payload(data)
    except (ValidationError, TypeError) as exc:
        raise ValueError(str(exc)) from exc


def extract_payloads(text: str) -> Tuple[List[Union[PartPayload, ScriptPayload]], int]:
    """Parse every block in ``text``; bad blocks are logged and skipped.

    Returns the payloads in text order and the number of skipped blocks.
    """
    payloads: List[Union[PartPayload, ScriptPayload]] = []
    skipped = 0
    for index, body in enumerate(scan_blocks(text)):
        try:
            payloads.append(parse_block(body))
        except ValueError as exc:
            skipped += 1
            logger.warning("Skipping structured block %d: %s", index, exc)
    return payloads, skipped
