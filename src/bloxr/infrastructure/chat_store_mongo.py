from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Dict, List, Optional
import uuid

from pymongo.errors import PyMongoError

from ..core.errors import ChatNotFound, StoreUnavailable
from ..domain.chat_models import Chat, ChatMessage
from .chat_store import DEFAULT_TITLE, InMemoryChatStore
from .mongo import connect_database


class MongoChatStore:
    def __init__(self, database: Optional[Any] = None) -> None:
        self._fallback = InMemoryChatStore()
        self._chats = None
        self._messages = None
        db = database if database is not None else connect_database()
        if db is None:
            return
        try:
            self._chats = db["chats"]
            self._messages = db["chat_messages"]
            self._chats.create_index("chat_id", unique=True)
            self._chats.create_index([("user_id", 1), ("updated_at", -1)])
            self._messages.create_index([("chat_id", 1), ("created_at", 1)])
        except PyMongoError:
            self._chats = None
            self._messages = None

    def _use_fallback(self) -> bool:
        return self._chats is None or self._messages is None

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")

    def create_chat(self, user_id: str, title: Optional[str] = None, project_id: Optional[str] = None) -> Chat:
        if self._use_fallback():
            return self._fallback.create_chat(user_id, title=title, project_id=project_id)
        now = self._now_iso()
        doc = {
            "chat_id": uuid.uuid4().hex,
            "user_id": user_id,
            "title": title or DEFAULT_TITLE,
            "project_id": project_id,
            "created_at": now,
            "updated_at": now,
        }
        try:
            self._chats.insert_one(dict(doc))  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to create chat") from exc
        return self._to_chat(doc)

    def get_chat(self, user_id: str, chat_id: str) -> Optional[Chat]:
        if self._use_fallback():
            return self._fallback.get_chat(user_id, chat_id)
        try:
            doc = self._chats.find_one({"chat_id": chat_id, "user_id": user_id})  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to read chat") from exc
        return self._to_chat(doc) if doc else None

    def add_message(self, user_id: str, chat_id: str, role: str, content: str) -> ChatMessage:
        if self._use_fallback():
            return self._fallback.add_message(user_id, chat_id, role, content)
        if self.get_chat(user_id, chat_id) is None:
            raise ChatNotFound(chat_id)
        now = self._now_iso()
        doc = {
            "message_id": uuid.uuid4().hex,
            "chat_id": chat_id,
            "role": role,
            "content": content,
            "created_at": now,
        }
        try:
            self._messages.insert_one(dict(doc))  # type: ignore[union-attr]
            self._chats.update_one({"chat_id": chat_id}, {"$set": {"updated_at": now}})  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to append message") from exc
        return self._to_message(doc)

    def list_messages(self, user_id: str, chat_id: str) -> List[ChatMessage]:
        if self._use_fallback():
            return self._fallback.list_messages(user_id, chat_id)
        if self.get_chat(user_id, chat_id) is None:
            raise ChatNotFound(chat_id)
        try:
            cursor = self._messages.find({"chat_id": chat_id}).sort("created_at", 1)  # type: ignore[union-attr]
            return [self._to_message(doc) for doc in cursor]
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to list messages") from exc

    def _to_chat(self, doc: Dict[str, Any]) -> Chat:
        return Chat(
            chat_id=str(doc.get("chat_id")),
            user_id=str(doc.get("user_id")),
            title=str(doc.get("title") or DEFAULT_TITLE),
            project_id=doc.get("project_id"),
            created_at=str(doc.get("created_at", self._now_iso())),
            updated_at=str(doc.get("updated_at", self._now_iso())),
        )

    def _to_message(self, doc: Dict[str, Any]) -> ChatMessage:
        return ChatMessage(
            message_id=str(doc.get("message_id")),
            chat_id=str(doc.get("chat_id")),
            role=doc.get("role", "assistant"),
            content=str(doc.get("content", "")),
            created_at=str(doc.get("created_at", self._now_iso())),
        )
