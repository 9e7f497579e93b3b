from __future__ import annotations

"""Runtime settings read from the environment.

Env vars:
- BLOXR_STORE_IMPL (memory | mongo, default memory)
- BLOXR_HISTORY_HEAD / BLOXR_HISTORY_TAIL / BLOXR_HISTORY_MAX
- BLOXR_MAX_TOKENS / BLOXR_LLM_TEMPERATURE
- BLOXR_CORS_ORIGINS (comma separated)
"""

from dataclasses import dataclass, field
from typing import List
import os


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    store_impl: str = "memory"
    history_head: int = 2
    history_tail: int = 16
    history_max: int = 20
    max_tokens: int = 4096
    temperature: float = 0.2
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])

    @staticmethod
    def from_env() -> "Settings":
        origins_raw = os.getenv("BLOXR_CORS_ORIGINS", "")
        origins = [o.strip() for o in origins_raw.split(",") if o.strip()]
        settings = Settings(
            store_impl=(os.getenv("BLOXR_STORE_IMPL") or "memory").lower(),
            history_head=_env_int("BLOXR_HISTORY_HEAD", 2),
            history_tail=_env_int("BLOXR_HISTORY_TAIL", 16),
            history_max=_env_int("BLOXR_HISTORY_MAX", 20),
            max_tokens=_env_int("BLOXR_MAX_TOKENS", 4096),
            temperature=_env_float("BLOXR_LLM_TEMPERATURE", 0.2),
        )
        if origins:
            settings.cors_origins = origins
        # head + tail must fit under the hard cap
        if settings.history_head + settings.history_tail > settings.history_max:
            settings.history_tail = max(0, settings.history_max - settings.history_head)
        return settings
