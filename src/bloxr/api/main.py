from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional
import logging
import os

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..config import Settings
from ..core.errors import StoreUnavailable
from ..infrastructure.chat_store import ChatStore, get_chat_store
from ..infrastructure.queue_store import WorkQueue, get_work_queue
from ..infrastructure.session_store import SessionStore, get_session_store
from ..observability.metrics import metrics_middleware_factory
from ..services.context_store import WorkspaceContextStore, WorkspaceStore
from ..services.generation import GenerationPipeline
from ..services.llm import RoutedTokenSource, TokenSource
from .routers.auth import router as auth_router
from .routers.chat import router as chat_router
from .routers.sync import router as sync_router

load_dotenv()  # OPENAI_API_KEY, MONGO_URL, BLOXR_* from .env if present

logger = logging.getLogger(__name__)

API_TITLE = "bloxr API"
API_VERSION = "0.1.0"


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_store: Optional[SessionStore] = None,
    work_queue: Optional[WorkQueue] = None,
    chat_store: Optional[ChatStore] = None,
    workspace: Optional[WorkspaceStore] = None,
    token_source: Optional[TokenSource] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    app = FastAPI(title=API_TITLE, version=API_VERSION)

    app.state.settings = settings
    app.state.session_store = session_store or get_session_store()
    app.state.work_queue = work_queue or get_work_queue()
    app.state.chat_store = chat_store or get_chat_store()
    app.state.workspace = workspace or WorkspaceContextStore()
    app.state.pipeline = GenerationPipeline(
        token_source or RoutedTokenSource(temperature=settings.temperature, max_tokens=settings.max_tokens),
        app.state.work_queue,
        app.state.workspace,
        history_head=settings.history_head,
        history_tail=settings.history_tail,
        history_max=settings.history_max,
    )

    # Observability: request latency histogram
    app.middleware("http")(metrics_middleware_factory())

    app.include_router(auth_router, prefix="/api")
    app.include_router(chat_router, prefix="/api")
    app.include_router(sync_router, prefix="/api")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable"},
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.get("/")
    def root():
        return {"name": API_TITLE, "version": API_VERSION}

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "components": {
                "api": "ok",
                "store": settings.store_impl,
            },
        }

    @app.get("/metrics")
    def metrics() -> Response:
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


def run() -> None:
    uvicorn.run(
        "bloxr.api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3001")),
    )


if __name__ == "__main__":
    run()
