from __future__ import annotations

"""Prometheus metrics for the bloxr API.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for the generation-to-delivery pipeline.
"""

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

REQUEST_LATENCY = Histogram(
    "bloxr_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

QUEUE_PUSHED = Counter(
    "bloxr_queue_pushed_total",
    "Items accepted by the work queue",
    labelnames=("source",),
)
QUEUE_PUSH_FAILED = Counter(
    "bloxr_queue_push_failed_total",
    "Work queue pushes that failed",
    labelnames=("source",),
)
QUEUE_CONFIRMED = Counter(
    "bloxr_queue_confirmed_total",
    "Items confirmed (deleted) by the plugin",
)
QUEUE_ERRORS = Counter(
    "bloxr_queue_errors_total",
    "Runtime errors reported by the plugin",
)
BLOCKS_EXTRACTED = Counter(
    "bloxr_blocks_extracted_total",
    "Structured blocks found in generated text",
    labelnames=("outcome",),
)


def sanitize_path(path: str) -> str:
    """Coarse path label: ``/api/chats/<id>/messages`` becomes ``/api/chats``."""
    segments = [s for s in (path or "").split("?", 1)[0].split("/") if s]
    return "/" + "/".join(segments[:2])


Handler = Callable[[Request], Awaitable[Response]]


def metrics_middleware_factory() -> Callable[[Request, Handler], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Handler) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)
        started = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            # streaming bodies are timed to the first byte, not to completion
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=status,
            ).observe(time.perf_counter() - started)

    return middleware
