from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field


Role = Literal["user", "assistant"]


class ConversationTurn(BaseModel):
    role: Role
    content: str = Field(validation_alias=AliasChoices("content", "text"))


class ChatRequest(BaseModel):
    message: str
    conversationHistory: List[ConversationTurn] = Field(default_factory=list)
    workspaceContext: Optional[List[str]] = None
    chat_id: Optional[str] = None


class ChatCreate(BaseModel):
    title: Optional[str] = None
    project_id: Optional[str] = None


class Chat(BaseModel):
    chat_id: str
    user_id: str
    title: str
    project_id: Optional[str] = None
    created_at: str
    updated_at: str


class ChatMessageCreate(BaseModel):
    role: Role
    content: str = Field(min_length=1, validation_alias=AliasChoices("content", "text"))


class ChatMessage(BaseModel):
    message_id: str
    chat_id: str
    role: Role
    content: str
    created_at: str


class ChatWithMessages(BaseModel):
    chat: Chat
    messages: List[ChatMessage]
