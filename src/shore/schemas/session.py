from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class KeysIn(BaseModel):
    """Keystrokes in chord notation, e.g. ``["i", "h", "i", "enter"]``."""

    keys: list[str] = Field(min_length=1)


class SessionStateOut(BaseModel):
    state: dict[str, Any]
    commands: list[str] = []


class ChatOut(BaseModel):
    id: int
    title: str | None
    created_at: datetime


class ChatMessageOut(BaseModel):
    id: int
    chat_id: int
    role: str
    content: str | None
    reasoning_content: str | None = None
    tool_calls: str | None = None
    tool_call_id: str | None = None
    name: str | None = None
    model_id: int | None = None
    error: str | None = None
    created_at: datetime
    response_at: datetime | None = None


class SearchHitOut(BaseModel):
    chat_id: int
    kind: Literal["title", "content"]
    score: float
    text: str | None
    message_id: int | None = None
