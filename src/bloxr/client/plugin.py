from __future__ import annotations

"""Polling client for the Studio side of the delivery queue.

The plugin has no connection to the browser; it learns about new work only
by polling ``/api/sync/pending``. Delivery is at-least-once, so ``apply``
callbacks passed to ``poll_once`` should tolerate seeing the same item id
twice.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union
import logging

import requests


logger = logging.getLogger(__name__)

Apply = Callable[[Dict[str, Any]], None]


@dataclass
class PendingWork:
    item: Optional[Dict[str, Any]]
    last_error: Optional[Dict[str, Any]] = None


@dataclass
class PollResult:
    applied: Optional[str] = None
    failed: Optional[str] = None
    last_error: Optional[Dict[str, Any]] = None


def issue_token(base_url: str, user_id: str, *, session: Optional[requests.Session] = None, timeout: float = 10.0) -> str:
    http = session or requests.Session()
    resp = http.post(f"{base_url.rstrip('/')}/api/auth/token", json={"user_id": user_id}, timeout=timeout)
    resp.raise_for_status()
    return resp.json()["token"]


class DeliveryClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._session = session or requests.Session()
        self._timeout = timeout

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        return self._session.request(
            method,
            f"{self.base_url}/api/sync{path}",
            headers={"Authorization": f"Bearer {self._token}"},
            timeout=self._timeout,
            **kwargs,
        )

    def _json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        resp = self._request(method, path, **kwargs)
        resp.raise_for_status()
        return resp.json() or {}

    def pending(self) -> PendingWork:
        body = self._json("GET", "/pending")
        last_error = body.pop("lastError", None)
        return PendingWork(item=body or None, last_error=last_error)

    def push(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._json("POST", "/push", json=payload)

    def confirm(self, item_id: str) -> bool:
        """``False`` when the id is unknown, e.g. already confirmed by an earlier poll."""
        resp = self._request("POST", "/confirm", json={"id": item_id})
        if resp.status_code == 404:
            logger.debug("Queue item %s was already gone", item_id)
            return False
        resp.raise_for_status()
        return True

    def report_error(
        self,
        message: str,
        *,
        script: Optional[str] = None,
        line: Optional[int] = None,
        item_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": message, "script": script, "line": line}
        if item_id:
            body["id"] = item_id
        return self._json("POST", "/error", json=body)

    def heartbeat(self) -> Dict[str, Any]:
        return self._json("GET", "/heartbeat")

    def get_context(self) -> List[str]:
        return list(self._json("GET", "/context").get("context", []))

    def set_context(self, context: List[str]) -> List[str]:
        return list(self._json("POST", "/context", json={"context": context}).get("context", []))

    def report_place(self, place_id: Union[int, str, None], game_id: Union[int, str, None]) -> None:
        self._json("POST", "/place", json={"placeId": place_id, "gameId": game_id})

    def poll_once(self, apply: Apply) -> PollResult:
        """Fetch the oldest pending item, apply it, then confirm or report it."""
        work = self.pending()
        result = PollResult(last_error=work.last_error)
        if work.last_error:
            logger.warning("Runtime error reported earlier: %s", work.last_error.get("message"))
        item = work.item
        if not item:
            return result

        payload = item.get("payload") or {}
        try:
            apply(payload)
        except Exception as exc:
            logger.warning("Applying %s failed: %s", item.get("id"), exc)
            self.report_error(str(exc), script=payload.get("name"), item_id=item["id"])
            result.failed = item["id"]
            return result

        self.confirm(item["id"])
        result.applied = item["id"]
        return result
