import json
from datetime import UTC, datetime

import httpx
import openai
import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage, ToolMessage

from shore.errors import ProviderError
from shore.models.chat import ChatMessage
from shore.providers.base import CompletionRequest, ModelTarget
from shore.providers.openai_compat import (
    OpenAIChatCompletion,
    _tool_requests,
    strip_think_tokens,
    to_langchain_messages,
)

TARGET = ModelTarget(
    model_id=1,
    model="gpt-5",
    provider_id=2,
    provider_name="OpenAI",
    base_url="https://api.openai.com/v1",
    api_key="sk-test",
)
ORIGIN = datetime(2025, 1, 1, tzinfo=UTC)


class ScriptedLLM:
    """Streams fixed chunks and records what it was given."""

    def __init__(self, chunks=(), error=None):
        self.chunks = list(chunks)
        self.error = error
        self.bound = None
        self.received = None

    def bind_tools(self, tools):
        self.bound = tools
        return self

    async def astream(self, messages):
        self.received = messages
        if self.error is not None:
            raise self.error
        for chunk in self.chunks:
            yield chunk


def request(*messages, tools=None, system_prompt=None):
    return CompletionRequest(
        target=TARGET,
        messages=list(messages) or [ChatMessage.user(1, "hi")],
        system_prompt=system_prompt,
        tools=tools or [],
    )


class TestStripThinkTokens:
    def test_split(self):
        assert strip_think_tokens("<think>weigh options</think>\nAnswer") == (
            "Answer",
            "weigh options",
        )

    def test_multiple_blocks(self):
        _, reasoning = strip_think_tokens("<think>a</think>x<think>b</think>")
        assert reasoning == "a\n\nb"

    def test_untouched(self):
        assert strip_think_tokens("plain") == ("plain", None)


class TestToLangchainMessages:
    def test_conversion(self):
        calls = json.dumps(
            [{"id": "c1", "name": "current_datetime", "arguments": '{"utc_offset_hours": 0}'}]
        )
        history = [
            ChatMessage.user(1, "what time is it?"),
            ChatMessage.assistant(1, 5, ORIGIN, content="", error="timeout"),
            ChatMessage.assistant(1, 5, ORIGIN, content="", tool_calls=calls),
            ChatMessage.tool_result(
                1, 5, ORIGIN, tool_call_id="c1", name="current_datetime", content="12:00"
            ),
            ChatMessage.assistant(1, 5, ORIGIN, content="It is noon."),
        ]
        messages = to_langchain_messages(history, "Be brief.")

        assert [type(m) for m in messages] == [
            SystemMessage,
            HumanMessage,
            AIMessage,
            ToolMessage,
            AIMessage,
        ]
        assert messages[2].tool_calls[0]["id"] == "c1"
        assert messages[2].tool_calls[0]["args"] == {"utc_offset_hours": 0}
        assert messages[3].tool_call_id == "c1"
        assert messages[4].content == "It is noon."

    def test_no_system_prompt(self):
        messages = to_langchain_messages([ChatMessage.user(1, "hi")])
        assert [type(m) for m in messages] == [HumanMessage]


class TestToolRequests:
    def test_merged_chunks(self):
        first = AIMessageChunk(
            content="",
            tool_call_chunks=[
                {"name": "current_datetime", "args": '{"utc_', "id": "call_1", "index": 0}
            ],
        )
        second = AIMessageChunk(
            content="",
            tool_call_chunks=[{"name": None, "args": 'offset_hours": 2}', "id": None, "index": 0}],
        )
        [call] = _tool_requests(first + second)
        assert call.id == "call_1"
        assert call.name == "current_datetime"
        assert call.arguments == '{"utc_offset_hours": 2}'

    def test_missing_id_gets_one(self):
        chunk = AIMessageChunk(
            content="", tool_call_chunks=[{"name": "f", "args": "", "id": None, "index": 0}]
        )
        [call] = _tool_requests(chunk)
        assert call.id == "call_f_0"
        assert call.arguments == "{}"

    def test_nothing_streamed(self):
        assert _tool_requests(None) == []


class TestOpenAIChatCompletion:
    @pytest.mark.asyncio
    async def test_streams_fragments(self):
        fake = GenericFakeChatModel(messages=iter([AIMessage(content="Hello there, friend")]))
        fragments = []
        completion = OpenAIChatCompletion(llm_factory=lambda target: fake)

        result = await completion.complete(request(), fragments.append)

        assert result.content == "Hello there, friend"
        assert result.tool_calls == []
        assert len(fragments) > 1
        assert "".join(f.content for f in fragments) == "Hello there, friend"

    @pytest.mark.asyncio
    async def test_think_tokens_removed(self):
        fake = GenericFakeChatModel(messages=iter([AIMessage(content="<think>hmm</think>Yes")]))
        completion = OpenAIChatCompletion(remove_think_tokens=True, llm_factory=lambda t: fake)
        result = await completion.complete(request())
        assert result.content == "Yes"
        assert result.reasoning_content == "hmm"

    @pytest.mark.asyncio
    async def test_reasoning_content_collected(self):
        llm = ScriptedLLM(
            [
                AIMessageChunk(content="", additional_kwargs={"reasoning_content": "step one"}),
                AIMessageChunk(content="Done"),
            ]
        )
        result = await OpenAIChatCompletion(llm_factory=lambda t: llm).complete(request())
        assert result.content == "Done"
        assert result.reasoning_content == "step one"

    @pytest.mark.asyncio
    async def test_tools_bound_and_calls_returned(self):
        spec = {"type": "function", "function": {"name": "current_datetime", "parameters": {}}}
        llm = ScriptedLLM(
            [
                AIMessageChunk(
                    content="",
                    tool_call_chunks=[
                        {"name": "current_datetime", "args": "{}", "id": "call_9", "index": 0}
                    ],
                )
            ]
        )
        completion = OpenAIChatCompletion(llm_factory=lambda t: llm)
        result = await completion.complete(
            request(tools=[spec], system_prompt="You are terse.")
        )

        assert llm.bound == [spec]
        assert isinstance(llm.received[0], SystemMessage)
        assert [(c.id, c.name, c.arguments) for c in result.tool_calls] == [
            ("call_9", "current_datetime", "{}")
        ]

    @pytest.mark.asyncio
    async def test_tools_not_bound_when_absent(self):
        llm = ScriptedLLM([AIMessageChunk(content="ok")])
        await OpenAIChatCompletion(llm_factory=lambda t: llm).complete(request())
        assert llm.bound is None

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("connection refused"),
            openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1")),
        ],
    )
    @pytest.mark.asyncio
    async def test_transport_errors_become_provider_errors(self, error):
        llm = ScriptedLLM(error=error)
        with pytest.raises(ProviderError):
            await OpenAIChatCompletion(llm_factory=lambda t: llm).complete(request())
