"""
Request bodies accepted by the HTTP surface.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    id: str
    messages: list[dict[str, Any]] = Field(min_length=1)
    selectedChatModel: str
    supportsTools: bool
    selectedTools: list[str] | None = None
    data: dict[str, str] | None = None


class VoteRequest(BaseModel):
    chat_id: str = Field(min_length=1)
    message_id: str = Field(min_length=1)
    type: Literal["up", "down"]


class VisibilityRequest(BaseModel):
    chatId: str = Field(min_length=1)
    visibility: Literal["private", "public"]


class AgentCreate(BaseModel):
    name: str = Field(min_length=1)
    model: str = Field(min_length=1)
    description: str = ""
    prompt: str = ""
    temperature: float = Field(default=0.5, ge=0, le=2)
    context_length: int = Field(default=4096, gt=0)


class AgentUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    model: str | None = Field(default=None, min_length=1)
    description: str | None = None
    prompt: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    context_length: int | None = Field(default=None, gt=0)
