"""Chooses which model provider serves code generation.

Only configuration is resolved here; ``bloxr.services.llm`` turns the
returned ``ProviderSelection`` into a streaming client, so routing can be
tested without any provider SDK installed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Set, Tuple


@dataclass(frozen=True)
class ProviderSelection:
    """Resolved settings for the provider that will stream a response."""

    name: str
    model: str
    api_key_env: Optional[str]
    base_url_env: Optional[str] = None
    default_base_url: Optional[str] = None
    requires_api_key: bool = True


@dataclass(frozen=True)
class _ProviderSpec:
    api_key_env: str
    base_url_env: str
    model_env: str
    default_model: str
    default_base_url: str
    requires_api_key: bool = True


PROVIDERS: Dict[str, _ProviderSpec] = {
    "openai": _ProviderSpec(
        "OPENAI_API_KEY", "OPENAI_BASE_URL", "OPENAI_MODEL", "gpt-4o", "https://api.openai.com/v1"
    ),
    "xai": _ProviderSpec("XAI_API_KEY", "XAI_BASE_URL", "XAI_MODEL", "grok-2-latest", "https://api.x.ai/v1"),
    "gemini": _ProviderSpec(
        "GEMINI_API_KEY",
        "GEMINI_BASE_URL",
        "GEMINI_MODEL",
        "gemini-2.5-flash",
        "https://generativelanguage.googleapis.com/v1beta/openai/",
    ),
    # Ollama or any OpenAI-compatible host on the local network
    "local": _ProviderSpec(
        "LOCAL_API_KEY",
        "LOCAL_BASE_URL",
        "LOCAL_MODEL",
        "qwen2.5-coder:32b",
        "http://127.0.0.1:11434",
        requires_api_key=False,
    ),
}

# strongest hosted coder first
PRIORITY: Dict[str, Tuple[str, ...]] = {
    "generation": ("openai", "xai", "gemini", "local"),
}


class ModelRouter:
    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        allowed_providers: Optional[Iterable[str]] = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._allowed: Optional[Set[str]] = set(allowed_providers) if allowed_providers else None
        preferred = (self._env.get("BLOXR_MODEL_PROVIDER") or "").strip().lower()
        self.preferred = preferred if preferred in PROVIDERS else None

    def _local_enabled(self) -> bool:
        return (self._env.get("BLOXR_ENABLE_LOCAL_PROVIDER") or "").strip() == "1"

    def provider_available(self, provider: str) -> bool:
        spec = PROVIDERS.get(provider)
        if spec is None:
            return False
        if self._allowed is not None and provider not in self._allowed:
            return False
        if spec.requires_api_key:
            return bool(self._env.get(spec.api_key_env))
        # keyless hosts are never picked up implicitly
        if self._local_enabled():
            return True
        return self.preferred == provider and bool(self._env.get(spec.base_url_env))

    def resolve_provider(self, provider: str) -> ProviderSelection:
        spec = PROVIDERS[provider]
        return ProviderSelection(
            name=provider,
            model=self._env.get(spec.model_env) or spec.default_model,
            api_key_env=spec.api_key_env,
            base_url_env=spec.base_url_env,
            default_base_url=spec.default_base_url,
            requires_api_key=spec.requires_api_key,
        )

    def candidates(self, purpose: str = "generation") -> Tuple[str, ...]:
        order = PRIORITY.get(purpose, PRIORITY["generation"])
        if self.preferred:
            order = (self.preferred,) + tuple(p for p in order if p != self.preferred)
        return order

    def select_provider(self, purpose: str = "generation") -> ProviderSelection:
        """First available provider for ``purpose``.

        Raises ``RuntimeError`` when none is configured.
        """
        for provider in self.candidates(purpose):
            if self.provider_available(provider):
                return self.resolve_provider(provider)
        raise RuntimeError("No active model provider available for this task.")

    def maybe_select_provider(self, purpose: str = "generation") -> Optional[ProviderSelection]:
        try:
            return self.select_provider(purpose)
        except RuntimeError:
            return None
