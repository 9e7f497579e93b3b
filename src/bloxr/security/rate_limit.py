from __future__ import annotations

"""Fixed-window, in-process rate limiting for unauthenticated endpoints."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Dict
import os


class RateLimitExceeded(Exception):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Rate limit exceeded")
        self.retry_after_seconds = retry_after_seconds


@dataclass
class _Window:
    count: int
    ends_at: datetime


@dataclass
class FixedWindowLimiter:
    """Allow ``limit`` hits per identifier in each window.

    Limits are re-read from the environment on every hit so tests and
    operators can adjust them without restarting the process.
    """

    name: str
    limit_env: str
    window_env: str
    default_limit: int
    default_window_seconds: int
    _windows: Dict[str, _Window] = field(default_factory=dict, repr=False)
    _lock: RLock = field(default_factory=RLock, repr=False)

    def hit(self, identifier: str) -> None:
        """Count one hit; raises ``RateLimitExceeded`` once the window is full."""
        if limiting_disabled():
            return
        limit = _positive_env_int(self.limit_env, self.default_limit)
        window = _positive_env_int(self.window_env, self.default_window_seconds)
        now = datetime.now(timezone.utc)
        with self._lock:
            current = self._windows.get(identifier)
            if current is None or current.ends_at <= now:
                self._windows[identifier] = _Window(count=1, ends_at=now + timedelta(seconds=window))
                return
            if current.count >= limit:
                remaining = int((current.ends_at - now).total_seconds())
                raise RateLimitExceeded(max(remaining, 1))
            current.count += 1

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def _positive_env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, ""))
    except ValueError:
        return default
    return value if value > 0 else default


def limiting_disabled() -> bool:
    flag = (os.getenv("BLOXR_RATE_LIMIT_DISABLED") or "").lower()
    return flag in {"1", "true", "yes", "on"}


TOKEN_ISSUE_LIMITER = FixedWindowLimiter(
    name="token_issue",
    limit_env="BLOXR_TOKEN_LIMIT",
    window_env="BLOXR_TOKEN_WINDOW_SEC",
    default_limit=20,
    default_window_seconds=300,
)


def reset_rate_limits() -> None:
    """Clear every limiter's counters (useful for tests)."""
    TOKEN_ISSUE_LIMITER.reset()
