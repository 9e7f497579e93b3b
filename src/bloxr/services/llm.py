from __future__ import annotations

"""Streaming model clients.

Every client is exposed as a ``TokenSource``: an async iterator of text
increments for a system instruction plus an ordered message list. Provider
failures propagate out of the iterator; the generation pipeline turns them
into a terminal error event.
"""

from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Protocol
import json
import logging
import os

import requests
from requests.adapters import HTTPAdapter
from starlette.concurrency import iterate_in_threadpool
from urllib3.util.retry import Retry

from .model_router import ModelRouter, ProviderSelection

try:
    from langchain_openai import ChatOpenAI  # type: ignore
except Exception:  # pragma: no cover - optional import
    ChatOpenAI = None  # type: ignore


logger = logging.getLogger(__name__)
LOG = logging.getLogger("bloxr.llm")

_STREAM_TIMEOUT = (
    int(os.getenv("BLOXR_LLM_CONNECT_TIMEOUT", "3")),
    int(os.getenv("BLOXR_LLM_READ_TIMEOUT", "60")),
)


class TokenSource(Protocol):
    def stream(self, system: str, messages: List[Dict[str, str]]) -> AsyncIterator[str]: ...


def _build_session() -> requests.Session:
    session = requests.Session()
    # connect-level retries only; a stream that already started is never replayed
    retry = Retry(
        total=2,
        connect=2,
        read=0,
        backoff_factor=0.5,
        status_forcelist=(429, 502, 503, 504),
        allowed_methods=frozenset(["POST"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class LocalLLMClient:
    """Streams from an on-prem host speaking the OpenAI or Ollama API."""

    def __init__(self, base_url: str, model: str) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._timeout = _STREAM_TIMEOUT
        self._session = _build_session()
        self.api_style = (os.getenv("BLOXR_LLM_LOCAL_API") or "auto").lower()

    def stream(self, messages: List[Dict[str, str]]) -> Iterator[Dict[str, Any]]:
        if self.api_style == "ollama":
            yield from self._stream_ollama(messages)
            return
        if self.api_style == "openai":
            yield from self._stream_openai(messages)
            return
        started = False
        try:
            for item in self._stream_openai(messages):
                started = True
                yield item
        except requests.exceptions.ConnectionError as exc:
            if started:
                # a replay would duplicate text the caller already has
                raise
            LOG.warning(
                "local_llm_stream_openai_failed_switching_to_ollama",
                extra={"base_url": self.base_url, "model": self.model, "err": str(exc)},
            )
            self.api_style = "ollama"
            yield from self._stream_ollama(messages)

    def _stream_openai(self, messages: List[Dict[str, str]]) -> Iterator[Dict[str, Any]]:
        LOG.debug("local_llm_stream", extra={"model": self.model, "base_url": self.base_url})
        payload = {"model": self.model, "messages": messages, "stream": True}
        with self._session.post(
            f"{self.base_url}/v1/chat/completions",
            json=payload,
            timeout=self._timeout,
            stream=True,
        ) as resp:
            resp.raise_for_status()
            for raw_line in resp.iter_lines():
                if not raw_line:
                    continue
                line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
                if not line.startswith("data: "):
                    continue
                data = line[6:].strip()
                if data == "[DONE]":
                    break
                try:
                    parsed = json.loads(data)
                except json.JSONDecodeError:
                    continue
                delta = (parsed.get("choices") or [{}])[0].get("delta") or {}
                token = delta.get("content") or ""
                if token:
                    yield {"token": token}

    def _stream_ollama(self, messages: List[Dict[str, str]]) -> Iterator[Dict[str, Any]]:
        LOG.debug("local_llm_stream_ollama", extra={"model": self.model, "base_url": self.base_url})
        payload = {"model": self.model, "messages": messages, "stream": True}
        with self._session.post(
            f"{self.base_url}/api/chat",
            json=payload,
            timeout=self._timeout,
            stream=True,
        ) as resp:
            resp.raise_for_status()
            for raw_line in resp.iter_lines():
                if not raw_line:
                    continue
                try:
                    data = json.loads(raw_line.decode("utf-8"))
                except json.JSONDecodeError:
                    continue
                if data.get("error"):
                    raise RuntimeError(str(data["error"]))
                token = (data.get("message") or {}).get("content") or ""
                if token:
                    yield {"token": token}
                if data.get("done"):
                    break


class LocalTokenSource:
    def __init__(self, client: LocalLLMClient) -> None:
        self._client = client

    async def stream(self, system: str, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        msgs = [{"role": "system", "content": system}] + list(messages)
        iterator = self._client.stream(msgs)
        try:
            async for item in iterate_in_threadpool(iterator):
                token = item.get("token") or ""
                if token:
                    yield token
        finally:
            # releases the HTTP response when the consumer stops early
            try:
                iterator.close()
            except ValueError:
                # still running in the worker thread; it finishes on its own
                LOG.debug("local_llm_stream_close_deferred")


def _chunk_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return ""


class LangChainTokenSource:
    def __init__(self, llm: Any) -> None:
        self._llm = llm

    async def stream(self, system: str, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        msgs = [{"role": "system", "content": system}] + list(messages)
        async for chunk in self._llm.astream(msgs):
            text = _chunk_text(getattr(chunk, "content", chunk))
            if text:
                yield text


def build_token_source(
    selection: ProviderSelection,
    *,
    temperature: float = 0.2,
    max_tokens: int = 4096,
) -> TokenSource:
    base_url = selection.default_base_url
    if selection.base_url_env:
        base_url = os.getenv(selection.base_url_env) or base_url

    if selection.name == "local":
        logger.info("Using local LLM provider base_url=%s model=%s", base_url, selection.model)
        return LocalTokenSource(LocalLLMClient(base_url=base_url or "http://127.0.0.1:11434", model=selection.model))

    if not ChatOpenAI:
        raise RuntimeError("LLM client not available")
    api_key = os.getenv(selection.api_key_env) if selection.api_key_env else None
    if selection.requires_api_key and not api_key:
        raise RuntimeError("LLM not configured")

    logger.info(
        "Using remote LLM provider name=%s model=%s base_url=%s",
        selection.name,
        selection.model,
        base_url,
    )
    client = ChatOpenAI(
        api_key=api_key,
        base_url=base_url,
        model=selection.model,
        temperature=temperature,
        max_tokens=max_tokens,
        streaming=True,
    )
    return LangChainTokenSource(client)


class RoutedTokenSource:
    """Resolves the provider per call so configuration changes apply without restart."""

    def __init__(
        self,
        router: Optional[ModelRouter] = None,
        *,
        temperature: float = 0.2,
        max_tokens: int = 4096,
    ) -> None:
        self._router = router
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def stream(self, system: str, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        router = self._router or ModelRouter()
        selection = router.select_provider("generation")
        source = build_token_source(selection, temperature=self._temperature, max_tokens=self._max_tokens)
        LOG.info("llm_stream_started", extra={"provider": selection.name, "model": selection.model})
        async with aclosing(source.stream(system, messages)) as tokens:
            async for token in tokens:
                yield token
