from __future__ import annotations

"""Domain exceptions shared by stores, services and routers."""


class SessionError(Exception):
    """Base class for bearer session lookup failures."""

    reason = "unauthorized"


class SessionInvalid(SessionError):
    reason = "invalid"


class SessionExpired(SessionError):
    reason = "expired"


class StoreUnavailable(Exception):
    """The backing store could not serve the request; callers may retry."""

    def __init__(self, message: str = "Store unavailable", retry_after_seconds: int = 2) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class QueueItemNotFound(KeyError):
    def __init__(self, item_id: str) -> None:
        super().__init__(item_id)
        self.item_id = item_id


class ChatNotFound(KeyError):
    def __init__(self, chat_id: str) -> None:
        super().__init__(chat_id)
        self.chat_id = chat_id
