from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fastapi.testclient import TestClient


def auth_headers(client: TestClient, user_id: str = "user-1") -> Dict[str, str]:
    """Issue a session token for ``user_id`` and return bearer headers."""
    res = client.post("/api/auth/token", json={"user_id": user_id})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['token']}"}


def sse_payloads(body: str) -> List[str]:
    """Raw ``data:`` payloads of an event-stream body, in order."""
    return [line[len("data: "):] for line in body.split("\n") if line.startswith("data: ")]


def sse_frames(body: str) -> List[Any]:
    frames: List[Any] = []
    for payload in sse_payloads(body):
        frames.append(payload if payload == "[DONE]" else json.loads(payload))
    return frames


def script_block(name: str = "Spinner", code: str = "print('hi')", **extra: Any) -> str:
    doc: Dict[str, Any] = {
        "type": "script",
        "name": name,
        "scriptType": "Script",
        "targetService": "ServerScriptService",
        "code": code,
    }
    doc.update(extra)
    return "```json\n" + json.dumps(doc) + "\n```"


def part_block(name: str = "Platform", **properties: Any) -> str:
    doc = {"type": "part", "name": name, "className": "Part", "properties": properties or {"Anchored": True}}
    return "```json\n" + json.dumps(doc) + "\n```"


class FakeTokenSource:
    """Yields canned tokens; optionally raises after ``fail_after`` tokens."""

    def __init__(self, tokens: Iterable[str], *, fail_after: Optional[int] = None) -> None:
        self.tokens = list(tokens)
        self.fail_after = fail_after
        self.calls: List[Tuple[str, List[Dict[str, str]]]] = []
        self.closed = False

    async def stream(self, system: str, messages: List[Dict[str, str]]):
        self.calls.append((system, list(messages)))
        try:
            for index, token in enumerate(self.tokens):
                if self.fail_after is not None and index >= self.fail_after:
                    raise RuntimeError("provider dropped the connection")
                yield token
            if self.fail_after is not None and self.fail_after >= len(self.tokens):
                raise RuntimeError("provider dropped the connection")
        finally:
            self.closed = True
