"""Concurrent multi-model dispatch.

One prompt fans out into one lane per model. Each lane is an asyncio task
that requests a completion, optionally loops through tool calls, and commits
its messages through the store. Lanes never share state; a failure in one
lane turns into a failed message for that model only. Results reach the
controller exclusively as events on ``DispatchEngine.events``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from shore.config import Settings, settings
from shore.dispatch.events import (
    DispatchEvent,
    LaneCommitted,
    LaneFinished,
    LanePartial,
    LaneState,
    LaneStateChanged,
    TitleGenerated,
)
from shore.errors import DispatchRejectedError, ToolLoopLimitError
from shore.models.chat import ChatMessage
from shore.models.tool import Tool
from shore.providers.base import CompletionRequest, Fragment
from shore.providers.registry import CompletionRegistry, ProviderRegistry
from shore.store import ChatStore
from shore.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

_TITLE_MAX_LENGTH = 80


@dataclass
class Lane:
    id: int
    chat_id: int
    model_id: int
    state: LaneState = LaneState.idle
    task: asyncio.Task[None] | None = None


@dataclass
class Turn:
    """One submitted prompt and the lanes answering it."""

    chat_id: int
    user_message: ChatMessage
    lanes: list[Lane] = field(default_factory=list)
    title_task: asyncio.Task[None] | None = None

    async def wait(self) -> None:
        tasks = [lane.task for lane in self.lanes if lane.task is not None]
        if self.title_task is not None:
            tasks.append(self.title_task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def clean_title(raw: str) -> str:
    """First non-empty line of a model's title answer, unquoted and bounded."""
    line = next((ln.strip() for ln in raw.splitlines() if ln.strip()), "")
    line = line.strip("\"'`*# ").strip()
    return line[:_TITLE_MAX_LENGTH]


class DispatchEngine:
    def __init__(
        self,
        store: ChatStore,
        providers: ProviderRegistry,
        completions: CompletionRegistry,
        tools: ToolExecutor | None = None,
        config: Settings = settings,
        events: asyncio.Queue[DispatchEvent] | None = None,
    ) -> None:
        self.store = store
        self.providers = providers
        self.completions = completions
        self.tools = tools or ToolExecutor()
        self.config = config
        self.events: asyncio.Queue[DispatchEvent] = events or asyncio.Queue()
        self._lane_ids = itertools.count(1)
        self._tasks: set[asyncio.Task[None]] = set()
        # last lane started per (chat, model); the next lane for the pair waits on it
        self._tails: dict[tuple[int, int], asyncio.Task[None]] = {}
        self._active: dict[tuple[int, int], int] = {}

    # ------------------------------------------------------------------

    def emit(self, event: DispatchEvent) -> None:
        self.events.put_nowait(event)

    def validate(self, model_ids: list[int]) -> None:
        if not model_ids:
            raise DispatchRejectedError("No model selected")
        unavailable = self.providers.unavailable(model_ids)
        if unavailable:
            names = ", ".join(f"{model} ({provider})" for model, provider in unavailable)
            raise DispatchRejectedError(f"Unavailable models: {names}", unavailable)

    def pending(self, chat_id: int, model_id: int) -> bool:
        return self._active.get((chat_id, model_id), 0) > 0

    def pending_models(self, chat_id: int) -> set[int]:
        return {m for (c, m), n in self._active.items() if c == chat_id and n > 0}

    def submit(
        self,
        chat_id: int,
        model_ids: list[int],
        prompt: str,
        tool_ids: list[int] | None = None,
        *,
        generate_title: bool = False,
    ) -> Turn:
        """Persist the prompt and start one lane per model.

        Must be called from a running event loop. Raises
        ``DispatchRejectedError`` before anything is written when the turn
        cannot be dispatched to every selected model.
        """
        model_ids = list(dict.fromkeys(model_ids))
        self.validate(model_ids)
        user_message = self.store.add_message(ChatMessage.user(chat_id, prompt))
        if tool_ids is None:
            tool_ids = self.store.get_chat_tool_ids(chat_id)
        tool_rows = self.store.get_tools(tool_ids)

        turn = Turn(chat_id=chat_id, user_message=user_message)
        for model_id in model_ids:
            lane = Lane(id=next(self._lane_ids), chat_id=chat_id, model_id=model_id)
            key = (chat_id, model_id)
            prerequisite = self._tails.get(key)
            self._active[key] = self._active.get(key, 0) + 1
            lane.task = self._spawn(self._run_lane(lane, user_message, tool_rows, prerequisite))
            self._tails[key] = lane.task
            turn.lanes.append(lane)
            self._set_state(lane, LaneState.pending)

        if generate_title:
            first = turn.lanes[0]
            turn.title_task = self._spawn(self._generate_title(first, user_message))
        logger.info(
            "Dispatched chat %d message %s to %d models", chat_id, user_message.id, len(model_ids)
        )
        return turn

    async def join(self) -> None:
        """Wait until every lane and title task started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _set_state(self, lane: Lane, state: LaneState) -> None:
        if lane.state == state:
            return
        lane.state = state
        logger.debug("Lane %d (chat %d, model %d) -> %s", lane.id, lane.chat_id, lane.model_id, state)
        self.emit(LaneStateChanged(lane.chat_id, lane.model_id, lane.id, state))

    def _release(self, lane: Lane) -> None:
        key = (lane.chat_id, lane.model_id)
        self._active[key] = max(self._active.get(key, 1) - 1, 0)
        if not self._active[key]:
            del self._active[key]
        if self._tails.get(key) is lane.task:
            del self._tails[key]

    def _finish(self, lane: Lane, state: LaneState, message: ChatMessage | None) -> None:
        self._set_state(lane, state)
        self._release(lane)
        self.emit(LaneFinished(lane.chat_id, lane.model_id, lane.id, state, message))

    async def _run_lane(
        self,
        lane: Lane,
        user_message: ChatMessage,
        tool_rows: list[Tool],
        prerequisite: asyncio.Task[None] | None,
    ) -> None:
        if prerequisite is not None and not prerequisite.done():
            await asyncio.wait({prerequisite})

        partial = ""

        def on_fragment(fragment: Fragment) -> None:
            nonlocal partial
            partial += fragment.content
            self._set_state(lane, LaneState.streaming)
            self.emit(
                LanePartial(
                    lane.chat_id, lane.model_id, lane.id, fragment.content, fragment.reasoning
                )
            )

        origin = user_message.created_at
        try:
            target = self.providers.target(lane.model_id)
            completion = self.completions.for_shape(target.api_shape)
            tool_specs = self.tools.specs(tool_rows)
            rounds = 0
            while True:
                if not self.store.chat_exists(lane.chat_id):
                    self._finish(lane, LaneState.discarded, None)
                    return
                history = self.store.conversation(lane.chat_id, lane.model_id, user_message)
                partial = ""
                self._set_state(lane, LaneState.pending)
                result = await completion.complete(
                    CompletionRequest(
                        target=target,
                        messages=history,
                        system_prompt=self.config.system_prompt,
                        tools=tool_specs,
                    ),
                    on_fragment,
                )
                if not result.tool_calls:
                    answer = ChatMessage.assistant(
                        lane.chat_id,
                        lane.model_id,
                        origin,
                        content=result.content,
                        reasoning_content=result.reasoning_content,
                    )
                    committed = self.store.append_messages(lane.chat_id, [answer])
                    if committed is None:
                        self._finish(lane, LaneState.discarded, None)
                    else:
                        self._finish(lane, LaneState.completed, committed[0])
                    return

                if rounds >= self.config.max_tool_iterations:
                    raise ToolLoopLimitError(self.config.max_tool_iterations)
                rounds += 1
                self._set_state(lane, LaneState.tool_executing)
                prepared = [self.tools.prepare(call, tool_rows) for call in result.tool_calls]
                outputs = [await asyncio.to_thread(self.tools.run, impl, args) for impl, args in prepared]

                batch = [
                    ChatMessage.assistant(
                        lane.chat_id,
                        lane.model_id,
                        origin,
                        content=result.content,
                        reasoning_content=result.reasoning_content,
                        tool_calls=json.dumps([c.as_dict() for c in result.tool_calls]),
                    )
                ]
                batch.extend(
                    ChatMessage.tool_result(
                        lane.chat_id,
                        lane.model_id,
                        origin,
                        tool_call_id=call.id,
                        name=call.name,
                        content=output,
                    )
                    for call, output in zip(result.tool_calls, outputs, strict=True)
                )
                committed = self.store.append_messages(lane.chat_id, batch)
                if committed is None:
                    self._finish(lane, LaneState.discarded, None)
                    return
                self.emit(LaneCommitted(lane.chat_id, lane.model_id, lane.id, committed))
        except asyncio.CancelledError:
            self._release(lane)
            raise
        except Exception as exc:
            if isinstance(exc, ToolLoopLimitError):
                logger.warning("Lane %d: %s", lane.id, exc)
            else:
                logger.exception("Lane %d (model %d) failed", lane.id, lane.model_id)
            self._commit_failure(lane, origin, partial, str(exc) or type(exc).__name__)

    def _commit_failure(self, lane: Lane, origin: datetime, partial: str, error: str) -> None:
        failed = ChatMessage.assistant(
            lane.chat_id, lane.model_id, origin, content=partial, error=error
        )
        try:
            committed = self.store.append_messages(lane.chat_id, [failed])
        except Exception:
            logger.exception("Lane %d could not record its failure", lane.id)
            self._finish(lane, LaneState.failed, None)
            return
        if committed is None:
            self._finish(lane, LaneState.discarded, None)
        else:
            self._finish(lane, LaneState.failed, committed[0])

    async def _generate_title(self, lane: Lane, user_message: ChatMessage) -> None:
        if lane.task is not None:
            await asyncio.wait({lane.task})
        if lane.state != LaneState.completed:
            return
        try:
            messages = self.store.list_messages(lane.chat_id)
            history = [
                m
                for m in messages
                if (m.model_id is None or m.model_id == lane.model_id) and not m.is_failed
            ]
            if not history:
                return
            history.append(ChatMessage.user(lane.chat_id, self.config.title_prompt))
            target = self.providers.target(lane.model_id)
            completion = self.completions.for_shape(target.api_shape)
            result = await completion.complete(CompletionRequest(target=target, messages=history))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Title generation for chat %d failed", lane.chat_id, exc_info=True)
            return
        title = clean_title(result.content)
        if title:
            self.emit(TitleGenerated(lane.chat_id, title))
