from __future__ import annotations

"""Generation-to-delivery pipeline.

Streams model output to the caller as ``TextDelta`` events, then, once the
model has finished, extracts structured blocks from the full text and
enqueues each one for the user's plugin. Event order per call::

    TextDelta* -> [ExtractionStarted -> DeliveryOutcome] -> Done | StreamError
"""

from contextlib import aclosing
from typing import AsyncIterator, List, Optional, Sequence
import logging

from starlette.concurrency import run_in_threadpool

from ..domain.chat_models import ConversationTurn
from ..domain.conversation import HISTORY_HEAD, HISTORY_MAX, HISTORY_TAIL
from ..domain.events import (
    DeliveryOutcome,
    Done,
    ExtractionStarted,
    StreamError,
    StreamEvent,
    TextDelta,
)
from ..infrastructure.queue_store import WorkQueue
from ..observability.metrics import BLOCKS_EXTRACTED, QUEUE_PUSH_FAILED, QUEUE_PUSHED
from .blocks import extract_payloads
from .context_store import WorkspaceStore
from .llm import TokenSource
from .prompts import build_messages, build_system_prompt


logger = logging.getLogger(__name__)
LOG = logging.getLogger("bloxr.llm")

STREAM_FAILED_MESSAGE = "Failed to get response"


class GenerationPipeline:
    def __init__(
        self,
        token_source: TokenSource,
        queue: WorkQueue,
        workspace: WorkspaceStore,
        *,
        history_head: int = HISTORY_HEAD,
        history_tail: int = HISTORY_TAIL,
        history_max: int = HISTORY_MAX,
    ) -> None:
        self._source = token_source
        self._queue = queue
        self._workspace = workspace
        self._head = history_head
        self._tail = history_tail
        self._max = history_max

    async def generate(
        self,
        user_id: str,
        message: str,
        history: Sequence[ConversationTurn],
        workspace_context: Optional[List[str]] = None,
    ) -> AsyncIterator[StreamEvent]:
        context = workspace_context if workspace_context is not None else self._workspace.get_context(user_id)
        system = build_system_prompt(context)
        messages = build_messages(message, history, head=self._head, tail=self._tail, limit=self._max)

        accumulated: List[str] = []
        try:
            async with aclosing(self._source.stream(system, messages)) as tokens:
                async for token in tokens:
                    accumulated.append(token)
                    yield TextDelta(text=token)
        except Exception as exc:
            # a cut-off block cannot be trusted, so nothing is extracted
            LOG.warning(
                "llm_stream_failed",
                extra={"user_id": user_id, "err": str(exc), "chars": sum(len(t) for t in accumulated)},
            )
            yield StreamError(message=STREAM_FAILED_MESSAGE)
            return

        text = "".join(accumulated)
        payloads, skipped = extract_payloads(text)
        if skipped:
            BLOCKS_EXTRACTED.labels(outcome="invalid").inc(skipped)
        if payloads:
            BLOCKS_EXTRACTED.labels(outcome="parsed").inc(len(payloads))
            yield ExtractionStarted()
            pushed = await self._enqueue(user_id, payloads)
            yield DeliveryOutcome(pushed=pushed > 0)
        yield Done()

    async def _enqueue(self, user_id: str, payloads: Sequence) -> int:
        pushed = 0
        for index, payload in enumerate(payloads):
            try:
                item = await run_in_threadpool(self._queue.push, user_id, payload)
            except Exception as exc:
                QUEUE_PUSH_FAILED.labels(source="generation").inc()
                logger.warning("Queue push failed for block %d (%s): %s", index, payload.type, exc)
                continue
            pushed += 1
            QUEUE_PUSHED.labels(source="generation").inc()
            logger.info("Queued %s %r as %s for user %s", payload.type, payload.name, item.id, user_id)
        return pushed
