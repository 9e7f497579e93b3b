from __future__ import annotations

from typing import Any, Dict, Optional
import uuid

from pymongo.errors import PyMongoError

from ..core.errors import QueueItemNotFound, StoreUnavailable
from ..domain.models import QueueItem
from .mongo import connect_database
from .queue_store import InMemoryWorkQueue, PayloadModel, now_iso


class MongoWorkQueue:
    """``sync_queue`` collection; oldest-first by ``created_at`` then insertion order."""

    def __init__(self, database: Optional[Any] = None) -> None:
        self._fallback = InMemoryWorkQueue()
        self._items = None
        db = database if database is not None else connect_database()
        if db is None:
            return
        try:
            self._items = db["sync_queue"]
            self._items.create_index("id", unique=True)
            self._items.create_index([("user_id", 1), ("status", 1), ("created_at", 1)])
        except PyMongoError:
            self._items = None

    def _use_fallback(self) -> bool:
        return self._items is None

    def push(self, user_id: str, payload: PayloadModel) -> QueueItem:
        if self._use_fallback():
            return self._fallback.push(user_id, payload)
        doc: Dict[str, Any] = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "payload": payload.model_dump(),
            "status": "pending",
            "created_at": now_iso(),
        }
        try:
            self._items.insert_one(dict(doc))  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to enqueue item") from exc
        return self._to_item(doc)

    def peek_oldest_pending(self, user_id: str) -> Optional[QueueItem]:
        if self._use_fallback():
            return self._fallback.peek_oldest_pending(user_id)
        try:
            cursor = (
                self._items.find({"user_id": user_id, "status": "pending"})  # type: ignore[union-attr]
                .sort([("created_at", 1), ("_id", 1)])
                .limit(1)
            )
            doc = next(iter(cursor), None)
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to read queue") from exc
        if doc is None:
            return None
        return self._to_item(doc)

    def confirm(self, user_id: str, item_id: str) -> None:
        if self._use_fallback():
            return self._fallback.confirm(user_id, item_id)
        try:
            result = self._items.delete_one({"id": item_id, "user_id": user_id})  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to confirm item") from exc
        if not result.deleted_count:
            raise QueueItemNotFound(item_id)

    def mark_error(self, user_id: str, item_id: str) -> bool:
        if self._use_fallback():
            return self._fallback.mark_error(user_id, item_id)
        try:
            result = self._items.update_one(  # type: ignore[union-attr]
                {"id": item_id, "user_id": user_id},
                {"$set": {"status": "error"}},
            )
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to update item") from exc
        return bool(result.matched_count)

    def _to_item(self, doc: Dict[str, Any]) -> QueueItem:
        return QueueItem(
            id=str(doc["id"]),
            user_id=str(doc["user_id"]),
            payload=doc["payload"],
            status=doc.get("status", "pending"),
            created_at=str(doc.get("created_at") or now_iso()),
        )
