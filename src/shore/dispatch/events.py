"""Events the dispatch engine and background services report to the controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from shore.models.chat import ChatMessage


class LaneState(StrEnum):
    idle = "idle"
    pending = "pending"
    streaming = "streaming"
    tool_executing = "tool_executing"
    completed = "completed"
    failed = "failed"
    discarded = "discarded"

    @property
    def terminal(self) -> bool:
        return self in (LaneState.completed, LaneState.failed, LaneState.discarded)


@dataclass(frozen=True)
class LaneStateChanged:
    chat_id: int
    model_id: int
    lane_id: int
    state: LaneState


@dataclass(frozen=True)
class LanePartial:
    """Streamed text for display only; never persisted."""

    chat_id: int
    model_id: int
    lane_id: int
    content: str = ""
    reasoning: str = ""


@dataclass(frozen=True)
class LaneCommitted:
    """Tool-loop messages that were just committed for a lane."""

    chat_id: int
    model_id: int
    lane_id: int
    messages: list[ChatMessage] = field(default_factory=list)


@dataclass(frozen=True)
class LaneFinished:
    chat_id: int
    model_id: int
    lane_id: int
    state: LaneState
    # None when the chat vanished and the result was discarded
    message: ChatMessage | None = None


@dataclass(frozen=True)
class TitleGenerated:
    chat_id: int
    title: str


@dataclass(frozen=True)
class ModelsRefreshed:
    provider_id: int
    added: list[str] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    error: str | None = None


DispatchEvent = (
    LaneStateChanged | LanePartial | LaneCommitted | LaneFinished | TitleGenerated | ModelsRefreshed
)
