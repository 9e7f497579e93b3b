from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
from typing import Dict, List, Optional, Protocol
import os
import uuid

from ..core.errors import ChatNotFound
from ..domain.chat_models import Chat, ChatMessage


class ChatStore(Protocol):
    def create_chat(self, user_id: str, title: Optional[str] = None, project_id: Optional[str] = None) -> Chat: ...

    def get_chat(self, user_id: str, chat_id: str) -> Optional[Chat]: ...

    def add_message(self, user_id: str, chat_id: str, role: str, content: str) -> ChatMessage: ...

    def list_messages(self, user_id: str, chat_id: str) -> List[ChatMessage]: ...


DEFAULT_TITLE = "New Chat"


@dataclass
class _Chat:
    chat_id: str
    user_id: str
    title: str
    project_id: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class _Message:
    message_id: str
    chat_id: str
    role: str
    content: str
    created_at: str


class InMemoryChatStore:
    def __init__(self) -> None:
        self._chats: Dict[str, _Chat] = {}
        self._messages: Dict[str, List[_Message]] = {}
        self._lock = RLock()

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")

    def _owned(self, user_id: str, chat_id: str) -> Optional[_Chat]:
        chat = self._chats.get(chat_id)
        if chat is None or chat.user_id != user_id:
            return None
        return chat

    def create_chat(self, user_id: str, title: Optional[str] = None, project_id: Optional[str] = None) -> Chat:
        with self._lock:
            now = self._now_iso()
            chat = _Chat(
                chat_id=uuid.uuid4().hex,
                user_id=user_id,
                title=title or DEFAULT_TITLE,
                project_id=project_id,
                created_at=now,
                updated_at=now,
            )
            self._chats[chat.chat_id] = chat
            self._messages[chat.chat_id] = []
            return Chat(**chat.__dict__)

    def get_chat(self, user_id: str, chat_id: str) -> Optional[Chat]:
        with self._lock:
            chat = self._owned(user_id, chat_id)
            if chat is None:
                return None
            return Chat(**chat.__dict__)

    def add_message(self, user_id: str, chat_id: str, role: str, content: str) -> ChatMessage:
        with self._lock:
            chat = self._owned(user_id, chat_id)
            if chat is None:
                raise ChatNotFound(chat_id)
            now = self._now_iso()
            msg = _Message(
                message_id=uuid.uuid4().hex,
                chat_id=chat_id,
                role=role,
                content=content,
                created_at=now,
            )
            self._messages.setdefault(chat_id, []).append(msg)
            # bump chat updated_at
            chat.updated_at = now
            return ChatMessage(**msg.__dict__)

    def list_messages(self, user_id: str, chat_id: str) -> List[ChatMessage]:
        with self._lock:
            if self._owned(user_id, chat_id) is None:
                raise ChatNotFound(chat_id)
            return [ChatMessage(**m.__dict__) for m in self._messages.get(chat_id, [])]


_store: ChatStore | None = None


def get_chat_store() -> ChatStore:
    global _store
    if _store is not None:
        return _store
    impl = os.getenv("BLOXR_STORE_IMPL", "memory").lower()
    if impl == "mongo":
        from .chat_store_mongo import MongoChatStore

        _store = MongoChatStore()
        return _store
    _store = InMemoryChatStore()
    return _store
