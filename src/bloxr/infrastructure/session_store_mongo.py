from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Dict, Optional
import uuid

from pymongo.errors import DuplicateKeyError, PyMongoError

from ..core.errors import SessionExpired, SessionInvalid, StoreUnavailable
from ..domain.models import Session
from .mongo import connect_database
from .session_store import InMemorySessionStore, _ttl_days, new_token


class MongoSessionStore:
    """Sessions collection: ``{id, user_id, token, expires_at}``, unique on token."""

    def __init__(self, database: Optional[Any] = None) -> None:
        self._fallback = InMemorySessionStore()
        self._ttl = timedelta(days=_ttl_days())
        self._sessions = None
        db = database if database is not None else connect_database()
        if db is None:
            return
        try:
            self._sessions = db["sessions"]
            self._sessions.create_index("token", unique=True)
            self._sessions.create_index("user_id")
        except PyMongoError:
            self._sessions = None

    def _use_fallback(self) -> bool:
        return self._sessions is None

    def create(self, user_id: str) -> Session:
        if self._use_fallback():
            return self._fallback.create(user_id)
        doc: Dict[str, Any] = {
            "id": uuid.uuid4().hex,
            "user_id": user_id,
            "token": new_token(),
            "expires_at": datetime.now(UTC) + self._ttl,
        }
        try:
            try:
                self._sessions.insert_one(doc)  # type: ignore[union-attr]
            except DuplicateKeyError:
                doc["token"] = new_token()
                self._sessions.insert_one(doc)  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to create session") from exc
        return Session(token=doc["token"], user_id=user_id, expires_at=doc["expires_at"])

    def resolve(self, token: str) -> str:
        if self._use_fallback():
            return self._fallback.resolve(token)
        try:
            doc = self._sessions.find_one({"token": token}, {"user_id": 1, "expires_at": 1})  # type: ignore[union-attr]
        except PyMongoError as exc:
            raise StoreUnavailable("Failed to look up session") from exc
        if not doc:
            raise SessionInvalid()
        expires_at = doc.get("expires_at")
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        if expires_at is None or expires_at < datetime.now(UTC):
            raise SessionExpired()
        return str(doc["user_id"])
