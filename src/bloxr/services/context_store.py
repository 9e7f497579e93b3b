from __future__ import annotations

from threading import RLock
from typing import Any, Dict, List, Optional, Protocol

from ..domain.models import RuntimeErrorReport


class WorkspaceStore(Protocol):
    def get_context(self, user_id: str) -> List[str]: ...

    def put_context(self, user_id: str, context: List[str]) -> List[str]: ...

    def record_error(self, user_id: str, report: RuntimeErrorReport) -> None: ...

    def take_error_if_present(self, user_id: str) -> Optional[RuntimeErrorReport]: ...

    def put_place(self, user_id: str, place: Dict[str, Any]) -> None: ...

    def get_place(self, user_id: str) -> Optional[Dict[str, Any]]: ...


class WorkspaceContextStore:
    """Thread-safe process-local workspace state per user.

    Holds what the plugin says currently exists in the place, the last
    runtime error it reported (read-once) and the attached place ids.
    Not durable; the plugin re-sends its context every session.
    """

    def __init__(self) -> None:
        self._context: Dict[str, List[str]] = {}
        self._errors: Dict[str, RuntimeErrorReport] = {}
        self._places: Dict[str, Dict[str, Any]] = {}
        self._lock = RLock()

    def get_context(self, user_id: str) -> List[str]:
        with self._lock:
            return list(self._context.get(user_id, []))

    def put_context(self, user_id: str, context: List[str]) -> List[str]:
        with self._lock:
            self._context[user_id] = [str(c) for c in (context or [])]
            return list(self._context[user_id])

    def record_error(self, user_id: str, report: RuntimeErrorReport) -> None:
        with self._lock:
            self._errors[user_id] = report.model_copy()

    def take_error_if_present(self, user_id: str) -> Optional[RuntimeErrorReport]:
        with self._lock:
            return self._errors.pop(user_id, None)

    def put_place(self, user_id: str, place: Dict[str, Any]) -> None:
        with self._lock:
            self._places[user_id] = dict(place)

    def get_place(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            place = self._places.get(user_id)
            return dict(place) if place is not None else None
