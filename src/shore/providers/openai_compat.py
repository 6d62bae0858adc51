"""Chat completions against any OpenAI-compatible endpoint via langchain-openai."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

import httpx
import openai
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_openai import ChatOpenAI

from shore.errors import ProviderError
from shore.models.chat import ChatMessage, ChatRole
from shore.providers.base import (
    Completion,
    CompletionRequest,
    Fragment,
    FragmentCallback,
    ModelTarget,
    ToolCallRequest,
)

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL)

# Local servers reject an empty bearer token less often than a missing header.
_NO_KEY = "not-needed"


def strip_think_tokens(text: str) -> tuple[str, str | None]:
    """Split ``<think>`` blocks out of ``text``; returns (answer, reasoning)."""
    thoughts = [m.strip() for m in _THINK_RE.findall(text)]
    if not thoughts:
        return text, None
    return _THINK_RE.sub("", text).strip(), "\n\n".join(thoughts)


def to_langchain_messages(
    history: list[ChatMessage],
    system_prompt: str | None = None,
) -> list[BaseMessage]:
    """Convert stored conversation rows into langchain messages.

    Failed assistant messages are left out; they never reached the model as a
    real answer.
    """
    messages: list[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    for row in history:
        if row.role == ChatRole.user:
            messages.append(HumanMessage(content=row.content or ""))
        elif row.role == ChatRole.assistant:
            if row.is_failed:
                continue
            tool_calls = [
                {"id": tc["id"], "name": tc["name"], "args": json.loads(tc["arguments"] or "{}")}
                for tc in json.loads(row.tool_calls or "[]")
            ]
            messages.append(AIMessage(content=row.content or "", tool_calls=tool_calls))
        elif row.role == ChatRole.tool_result:
            messages.append(
                ToolMessage(content=row.content or "", tool_call_id=row.tool_call_id or "")
            )
    return messages


def _tool_requests(gathered: AIMessageChunk | None) -> list[ToolCallRequest]:
    if gathered is None:
        return []
    requests: list[ToolCallRequest] = []
    for i, chunk in enumerate(gathered.tool_call_chunks):
        name = chunk.get("name") or ""
        requests.append(
            ToolCallRequest(
                id=chunk.get("id") or f"call_{name}_{i}",
                name=name,
                arguments=chunk.get("args") or "{}",
            )
        )
    return requests


def _chunk_text(chunk: AIMessageChunk) -> str:
    if isinstance(chunk.content, str):
        return chunk.content
    return "".join(
        part.get("text", "") if isinstance(part, dict) else str(part) for part in chunk.content
    )


def default_llm(target: ModelTarget) -> BaseChatModel:
    return ChatOpenAI(
        model=target.model,
        api_key=target.api_key or _NO_KEY,  # type: ignore[arg-type]
        base_url=target.base_url,
        streaming=True,
    )


class OpenAIChatCompletion:
    def __init__(
        self,
        remove_think_tokens: bool = False,
        llm_factory: Callable[[ModelTarget], BaseChatModel] = default_llm,
    ) -> None:
        self.remove_think_tokens = remove_think_tokens
        self._llm_factory = llm_factory

    async def complete(
        self,
        request: CompletionRequest,
        on_fragment: FragmentCallback | None = None,
    ) -> Completion:
        llm: Any = self._llm_factory(request.target)
        if request.tools:
            llm = llm.bind_tools(request.tools)
        messages = to_langchain_messages(request.messages, request.system_prompt)

        content = ""
        reasoning = ""
        # Concatenate AIMessageChunks to properly merge streamed tool calls
        gathered: AIMessageChunk | None = None
        try:
            async for chunk in llm.astream(messages):
                text = _chunk_text(chunk)
                thought = chunk.additional_kwargs.get("reasoning_content") or ""
                if text or thought:
                    content += text
                    reasoning += thought
                    if on_fragment is not None:
                        on_fragment(Fragment(content=text, reasoning=thought))
                gathered = chunk if gathered is None else gathered + chunk
        except (openai.OpenAIError, httpx.HTTPError) as exc:
            logger.warning(
                "Completion request to %s/%s failed: %s",
                request.target.provider_name,
                request.target.model,
                exc,
            )
            raise ProviderError(str(exc)) from exc

        reasoning_content: str | None = reasoning or None
        if self.remove_think_tokens:
            content, thoughts = strip_think_tokens(content)
            if thoughts and reasoning_content is None:
                reasoning_content = thoughts

        return Completion(
            content=content,
            reasoning_content=reasoning_content,
            tool_calls=_tool_requests(gathered),
        )
