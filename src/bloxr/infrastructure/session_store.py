from __future__ import annotations

from datetime import UTC, datetime, timedelta
from threading import RLock
from typing import Dict, Optional, Protocol
import logging
import os
import secrets

from ..core.errors import SessionExpired, SessionInvalid
from ..domain.models import Session


logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30


class SessionStore(Protocol):
    def create(self, user_id: str) -> Session: ...

    def resolve(self, token: str) -> str: ...


def new_token() -> str:
    return secrets.token_urlsafe(32)


def _ttl_days() -> int:
    try:
        value = int(os.getenv("BLOXR_SESSION_TTL_DAYS", str(DEFAULT_TTL_DAYS)))
    except ValueError:
        return DEFAULT_TTL_DAYS
    return value if value > 0 else DEFAULT_TTL_DAYS


class InMemorySessionStore:
    """Token -> session map. Expiry is checked lazily on lookup, never swept."""

    def __init__(self, ttl_days: Optional[int] = None) -> None:
        self._sessions: Dict[str, Session] = {}
        self._ttl = timedelta(days=ttl_days or _ttl_days())
        self._lock = RLock()

    def create(self, user_id: str) -> Session:
        with self._lock:
            token = new_token()
            while token in self._sessions:
                token = new_token()
            session = Session(
                token=token,
                user_id=user_id,
                expires_at=datetime.now(UTC) + self._ttl,
            )
            self._sessions[token] = session
            return session.model_copy()

    def resolve(self, token: str) -> str:
        with self._lock:
            session = self._sessions.get(token)
        if session is None:
            raise SessionInvalid()
        if session.expires_at < datetime.now(UTC):
            raise SessionExpired()
        return session.user_id


_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is not None:
        return _store
    impl = os.getenv("BLOXR_STORE_IMPL", "memory").lower()
    if impl == "mongo":
        from .session_store_mongo import MongoSessionStore

        _store = MongoSessionStore()
        return _store
    _store = InMemorySessionStore()
    return _store
