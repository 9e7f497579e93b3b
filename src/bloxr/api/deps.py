from __future__ import annotations

"""Request-scoped accessors for the stores wired onto ``app.state``.

Handlers depend on these instead of module globals so each app instance
(and each test) carries its own stores.
"""

from fastapi import Request

from ..infrastructure.chat_store import ChatStore
from ..infrastructure.queue_store import WorkQueue
from ..infrastructure.session_store import SessionStore
from ..services.context_store import WorkspaceStore
from ..services.generation import GenerationPipeline


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_work_queue(request: Request) -> WorkQueue:
    return request.app.state.work_queue


def get_chat_store(request: Request) -> ChatStore:
    return request.app.state.chat_store


def get_workspace(request: Request) -> WorkspaceStore:
    return request.app.state.workspace


def get_pipeline(request: Request) -> GenerationPipeline:
    return request.app.state.pipeline
