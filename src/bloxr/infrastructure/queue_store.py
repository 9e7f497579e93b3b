from __future__ import annotations

from datetime import UTC, datetime
from threading import RLock
from typing import Dict, List, Optional, Protocol, Union
import os
import uuid

from ..core.errors import QueueItemNotFound
from ..domain.models import PartPayload, QueueItem, ScriptPayload


PayloadModel = Union[PartPayload, ScriptPayload]


class WorkQueue(Protocol):
    """Durable per-user delivery queue. Every call is scoped to ``user_id``."""

    def push(self, user_id: str, payload: PayloadModel) -> QueueItem: ...

    def peek_oldest_pending(self, user_id: str) -> Optional[QueueItem]: ...

    def confirm(self, user_id: str, item_id: str) -> None: ...

    def mark_error(self, user_id: str, item_id: str) -> bool: ...


def now_iso(moment: Optional[datetime] = None) -> str:
    """Fixed-width UTC timestamp; string order is chronological order."""
    moment = moment or datetime.now(UTC)
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


class InMemoryWorkQueue:
    def __init__(self) -> None:
        self._items: Dict[str, QueueItem] = {}
        self._by_user: Dict[str, List[str]] = {}
        self._lock = RLock()

    def push(self, user_id: str, payload: PayloadModel) -> QueueItem:
        with self._lock:
            item = QueueItem(
                id=uuid.uuid4().hex,
                user_id=user_id,
                payload=payload,
                status="pending",
                created_at=now_iso(),
            )
            self._items[item.id] = item
            # insertion order is creation order
            self._by_user.setdefault(user_id, []).append(item.id)
            return item.model_copy()

    def peek_oldest_pending(self, user_id: str) -> Optional[QueueItem]:
        with self._lock:
            for item_id in self._by_user.get(user_id, []):
                item = self._items.get(item_id)
                if item is not None and item.status == "pending":
                    return item.model_copy()
            return None

    def confirm(self, user_id: str, item_id: str) -> None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.user_id != user_id:
                raise QueueItemNotFound(item_id)
            del self._items[item_id]
            self._by_user[user_id].remove(item_id)

    def mark_error(self, user_id: str, item_id: str) -> bool:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.user_id != user_id:
                return False
            self._items[item_id] = item.model_copy(update={"status": "error"})
            return True

    def list_items(self, user_id: str) -> List[QueueItem]:
        with self._lock:
            return [self._items[i].model_copy() for i in self._by_user.get(user_id, []) if i in self._items]


_queue: WorkQueue | None = None


def get_work_queue() -> WorkQueue:
    global _queue
    if _queue is not None:
        return _queue
    impl = os.getenv("BLOXR_STORE_IMPL", "memory").lower()
    if impl == "mongo":
        from .queue_store_mongo import MongoWorkQueue

        _queue = MongoWorkQueue()
        return _queue
    _queue = InMemoryWorkQueue()
    return _queue
