from __future__ import annotations

from typing import AsyncIterator, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from ...core.errors import ChatNotFound
from ...domain.chat_models import (
    Chat,
    ChatCreate,
    ChatMessage,
    ChatMessageCreate,
    ChatRequest,
    ChatWithMessages,
    ConversationTurn,
)
from ...domain.events import encode_frame
from ...infrastructure.chat_store import ChatStore
from ...security.auth import get_current_user_id
from ...services.generation import GenerationPipeline
from ..deps import get_chat_store, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/chat", response_class=StreamingResponse)
async def chat(
    req: ChatRequest,
    user_id: str = Depends(get_current_user_id),
    pipeline: GenerationPipeline = Depends(get_pipeline),
    chats: ChatStore = Depends(get_chat_store),
):
    message = req.message.strip()
    if not message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

    history: List[ConversationTurn] = list(req.conversationHistory)
    if not history and req.chat_id:
        history = await run_in_threadpool(_stored_history, chats, user_id, req.chat_id)

    async def event_stream() -> AsyncIterator[str]:
        async for event in pipeline.generate(user_id, message, history, req.workspaceContext):
            yield encode_frame(event)

    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


def _stored_history(chats: ChatStore, user_id: str, chat_id: str) -> List[ConversationTurn]:
    try:
        messages = chats.list_messages(user_id, chat_id)
    except ChatNotFound:
        logger.debug("Ignoring unknown chat_id %s for user %s", chat_id, user_id)
        return []
    return [ConversationTurn(role=m.role, content=m.content) for m in messages]


@router.post("/chats", response_model=Chat, status_code=status.HTTP_201_CREATED)
def create_chat(
    req: Optional[ChatCreate] = None,
    user_id: str = Depends(get_current_user_id),
    chats: ChatStore = Depends(get_chat_store),
) -> Chat:
    req = req or ChatCreate()
    return chats.create_chat(user_id, title=req.title, project_id=req.project_id)


@router.get("/chats/{chat_id}", response_model=ChatWithMessages)
def get_chat(
    chat_id: str,
    user_id: str = Depends(get_current_user_id),
    chats: ChatStore = Depends(get_chat_store),
) -> ChatWithMessages:
    found = chats.get_chat(user_id, chat_id)
    if not found:
        raise HTTPException(status_code=404, detail="Chat not found")
    try:
        messages = chats.list_messages(user_id, chat_id)
    except ChatNotFound as exc:
        raise HTTPException(status_code=404, detail="Chat not found") from exc
    return ChatWithMessages(chat=found, messages=messages)


@router.post("/chats/{chat_id}/messages", response_model=ChatMessage, status_code=status.HTTP_201_CREATED)
def add_message(
    chat_id: str,
    req: ChatMessageCreate,
    user_id: str = Depends(get_current_user_id),
    chats: ChatStore = Depends(get_chat_store),
) -> ChatMessage:
    try:
        return chats.add_message(user_id, chat_id, req.role, req.content)
    except ChatNotFound as exc:
        raise HTTPException(status_code=404, detail="Chat not found") from exc
