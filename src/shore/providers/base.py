"""Provider-neutral request/response types and the completion capability interface."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from shore.models.chat import ChatMessage
from shore.models.provider import ApiShape


@dataclass(frozen=True)
class ModelTarget:
    """Everything needed to address one model on one provider."""

    model_id: int
    model: str
    provider_id: int
    provider_name: str
    base_url: str
    api_key: str
    api_shape: ApiShape = ApiShape.openai_chat


@dataclass
class ToolCallRequest:
    id: str
    name: str
    # raw JSON text exactly as the model produced it
    arguments: str

    def as_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class Fragment:
    content: str = ""
    reasoning: str = ""


@dataclass
class Completion:
    content: str = ""
    reasoning_content: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)


@dataclass
class CompletionRequest:
    target: ModelTarget
    messages: list[ChatMessage]
    system_prompt: str | None = None
    # OpenAI-format function specs; empty disables tool calling
    tools: list[dict[str, Any]] = field(default_factory=list)


FragmentCallback = Callable[[Fragment], None]


class ChatCompletion(Protocol):
    """Interface every provider API shape implements."""

    async def complete(
        self,
        request: CompletionRequest,
        on_fragment: FragmentCallback | None = None,
    ) -> Completion: ...
