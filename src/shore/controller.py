"""Session controller.

The controller is the single writer of ``SessionState``. Keystrokes pass
through the input state machine and come back as commands; dispatch results
arrive as events from the engine's queue. Both are applied here, one at a
time, and every change is announced to subscribers (the renderer) as a
``{"type": ..., "data": ...}`` event.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any

from shore.config import Settings, settings
from shore.dispatch.engine import DispatchEngine, Turn
from shore.dispatch.events import (
    DispatchEvent,
    LaneCommitted,
    LaneFinished,
    LanePartial,
    LaneStateChanged,
    ModelsRefreshed,
    TitleGenerated,
)
from shore.errors import DispatchRejectedError, PersistenceError
from shore.input.commands import (
    ApplyKeywordFilter,
    ClearFilter,
    ClearItemSelection,
    CloseModelDialog,
    Command,
    CycleIdleModel,
    CycleModel,
    DeleteChat,
    JumpMessage,
    MoveChat,
    MoveSelection,
    NewChat,
    OpenModelDialog,
    OpenTitleEdit,
    Quit,
    RenameChat,
    SelectItem,
    SelectModelEdge,
    SubmitPrompt,
    ToggleHistoryPane,
    ToggleModel,
    UpdateSearch,
    YankItem,
)
from shore.input.keys import Key
from shore.input.machine import handle_key
from shore.input.state import (
    DialogItem,
    EditBuffer,
    InputState,
    Mode,
    ModelDialogState,
    Surface,
)
from shore.models.chat import Chat, ChatMessage
from shore.providers.models_client import ModelListClient
from shore.providers.refresh import ClientFactory, refresh_all
from shore.providers.registry import ProviderRegistry
from shore.store import ChatFilter, ChatStore, ProfileSelection

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


def _order_key(message: ChatMessage) -> tuple[Any, int]:
    return (message.created_at, message.id or 0)


@dataclass
class SessionState:
    chat: Chat | None = None
    history: list[Chat] = field(default_factory=list)
    history_index: int = 0
    history_visible: bool = True
    messages: list[ChatMessage] = field(default_factory=list)
    model_ids: list[int] = field(default_factory=list)
    tool_ids: list[int] = field(default_factory=list)
    focus: int = 0
    cursors: dict[int, int] = field(default_factory=dict)
    selected_item: int | None = None
    chat_filter: ChatFilter | None = None
    search_preview: str = ""
    profile: ProfileSelection | None = None
    pending: set[int] = field(default_factory=set)
    partials: dict[int, str] = field(default_factory=dict)
    notices: list[str] = field(default_factory=list)
    input: InputState = field(default_factory=InputState)
    yanked: str | None = None
    quit: bool = False

    @property
    def focused_model(self) -> int | None:
        if not self.model_ids:
            return None
        return self.model_ids[min(self.focus, len(self.model_ids) - 1)]

    def messages_for(self, model_id: int) -> list[ChatMessage]:
        """The conversation as one model sees it: user messages plus its own."""
        return [m for m in self.messages if m.model_id is None or m.model_id == model_id]


class Controller:
    def __init__(
        self,
        store: ChatStore,
        dispatcher: DispatchEngine,
        providers: ProviderRegistry,
        config: Settings = settings,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.providers = providers
        self.config = config
        self.state = SessionState()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Outward events
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        event = {"type": event_type, "data": data or {}}
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed on %s event", event_type)

    def notify(self, text: str) -> None:
        logger.info("Notice: %s", text)
        self.state.notices.append(text)
        self.state.input.notice = text
        self.state.input.surface = Surface.notice
        self.publish("notice", {"text": text})

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.providers.load()
        self._repair_profile()
        self._load_history()
        if self.state.history:
            self._open_chat(self.state.history[0])
        else:
            self._new_chat()
        self.publish("state", self.snapshot())

    def _repair_profile(self) -> None:
        configured = {m.id for m in self.providers.configured_models()}
        try:
            self.state.profile = self.store.ensure_default_profile(
                configured,  # type: ignore[arg-type]
                self.providers.first_viable_model(),
                [t.id for t in self.store.list_tools()],  # type: ignore[misc]
            )
        except PersistenceError as exc:
            self.notify(str(exc))

    async def refresh_models(
        self,
        *,
        force: bool = False,
        client_factory: ClientFactory = ModelListClient,
    ) -> None:
        """Refresh remote model lists; results arrive as ``ModelsRefreshed`` events."""
        for event in await refresh_all(
            self.store, self.providers, force=force, client_factory=client_factory
        ):
            self.dispatcher.emit(event)

    # ------------------------------------------------------------------
    # Keys and commands
    # ------------------------------------------------------------------

    def handle_key(self, key: Key) -> list[Command]:
        new_input, commands = handle_key(self.state.input, key)
        self.state.input = new_input
        for command in commands:
            self.apply(command)
        self.publish("input", {"key": key.chord, "commands": [type(c).__name__ for c in commands]})
        return commands

    def apply(self, command: Command) -> None:
        try:
            self._apply(command)
        except PersistenceError as exc:
            self.notify(str(exc))

    def _apply(self, command: Command) -> None:
        st = self.state
        match command:
            case SubmitPrompt(text=text):
                self.submit_prompt(text)
            case MoveSelection(delta=delta):
                self._move_cursor(delta)
            case JumpMessage(to=to):
                model_id = st.focused_model
                if model_id is not None:
                    count = len(st.messages_for(model_id))
                    st.cursors[model_id] = 0 if to == "first" else max(count - 1, 0)
            case CycleModel(delta=delta, wrap=wrap):
                if st.model_ids:
                    target = st.focus + delta
                    if wrap:
                        st.focus = target % len(st.model_ids)
                    else:
                        st.focus = max(0, min(len(st.model_ids) - 1, target))
                    st.selected_item = None
            case SelectModelEdge(edge=edge):
                st.focus = 0 if edge == "first" else max(len(st.model_ids) - 1, 0)
                st.selected_item = None
            case CycleIdleModel():
                self._focus_idle_model()
            case MoveChat(delta=delta):
                if st.history:
                    index = max(0, min(len(st.history) - 1, st.history_index + delta))
                    self._open_chat(st.history[index])
            case NewChat():
                self._new_chat()
            case DeleteChat():
                self._delete_current()
            case UpdateSearch(query=query):
                st.search_preview = query
                preview = ChatFilter(keyword=query, limit=self.config.history_limit)
                st.history = self.store.list_chats(preview if query.strip() else self._base_filter())
                st.history_index = self._history_position()
            case ApplyKeywordFilter(query=query):
                st.chat_filter = ChatFilter(keyword=query, limit=self.config.history_limit)
                st.search_preview = ""
                st.history = self.store.list_chats(st.chat_filter)
                if st.history:
                    self._open_chat(st.history[0])
                else:
                    st.history_index = 0
            case ClearFilter():
                st.chat_filter = None
                st.search_preview = ""
                st.input.filter_active = False
                self._load_history()
            case SelectItem(delta=delta):
                self._select_item(delta)
            case ClearItemSelection():
                st.selected_item = None
            case YankItem():
                self._yank()
            case OpenModelDialog(target=target):
                self._open_model_dialog(target)
            case ToggleModel(model_id=model_id):
                dialog = st.input.model_dialog
                if dialog is not None:
                    for item in dialog.items:
                        if item.model_id == model_id:
                            item.selected = not item.selected
            case CloseModelDialog(apply=apply):
                self._close_model_dialog(apply)
            case ToggleHistoryPane():
                st.history_visible = not st.history_visible
            case OpenTitleEdit():
                self._open_title_edit()
            case RenameChat(title=title):
                self._rename(title)
            case Quit():
                st.quit = True
                self.publish("quit")

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def _base_filter(self) -> ChatFilter:
        return ChatFilter(limit=self.config.history_limit)

    def _load_history(self) -> None:
        st = self.state
        st.history = self.store.list_chats(st.chat_filter or self._base_filter())
        st.history_index = self._history_position()

    def _history_position(self) -> int:
        st = self.state
        if st.chat is None:
            return 0
        for index, chat in enumerate(st.history):
            if chat.id == st.chat.id:
                return index
        return 0

    def _open_chat(self, chat: Chat) -> None:
        st = self.state
        st.chat = chat
        st.messages = self.store.list_messages(chat.id)  # type: ignore[arg-type]
        st.model_ids = self.store.get_chat_model_ids(chat.id)  # type: ignore[arg-type]
        st.tool_ids = self.store.get_chat_tool_ids(chat.id)  # type: ignore[arg-type]
        if not st.model_ids and st.profile is not None:
            st.model_ids = list(st.profile.model_ids)
        st.focus = 0
        st.cursors = {m: max(len(st.messages_for(m)) - 1, 0) for m in st.model_ids}
        st.selected_item = None
        st.pending = self.dispatcher.pending_models(chat.id)  # type: ignore[arg-type]
        st.partials = {}
        st.history_index = self._history_position()
        self.publish("chat", {"chat_id": chat.id})

    def _new_chat(self) -> None:
        st = self.state
        st.chat = None
        st.messages = []
        st.model_ids = list(st.profile.model_ids) if st.profile else []
        st.tool_ids = list(st.profile.tool_ids) if st.profile else []
        st.focus = 0
        st.cursors = {}
        st.selected_item = None
        st.pending = set()
        st.partials = {}
        self.publish("chat", {"chat_id": None})

    def _delete_current(self) -> None:
        st = self.state
        if st.chat is None:
            self._new_chat()
            return
        self.store.delete_chat(st.chat.id)  # type: ignore[arg-type]
        st.chat = None
        self._load_history()
        if st.history:
            self._open_chat(st.history[0])
        else:
            self._new_chat()

    def _open_title_edit(self) -> None:
        st = self.state
        if st.chat is None:
            return
        title = st.chat.title or ""
        st.input.title_buffer = EditBuffer(title, len(title))
        st.input.surface = Surface.title_edit
        st.input.prefix = ""

    def _rename(self, title: str) -> None:
        st = self.state
        if st.chat is None:
            return
        st.chat = self.store.rename_chat(st.chat.id, title)  # type: ignore[arg-type]
        self._replace_in_history(st.chat)

    def _replace_in_history(self, chat: Chat) -> None:
        st = self.state
        st.history = [chat if c.id == chat.id else c for c in st.history]

    def submit_prompt(self, text: str) -> Turn | None:
        """Dispatch ``text`` to the current chat's models.

        An unsaved chat becomes a stored chat on its first submit, carrying
        the profile's model and tool selections. Returns None when the turn
        was rejected.
        """
        st = self.state
        try:
            self.dispatcher.validate(st.model_ids)
        except DispatchRejectedError as exc:
            self.notify(exc.reason)
            return None
        is_new = st.chat is None
        if st.chat is None:
            st.chat = self.store.create_chat(model_ids=st.model_ids, tool_ids=st.tool_ids)
            st.history.insert(0, st.chat)
            st.history_index = 0
        try:
            turn = self.dispatcher.submit(
                st.chat.id,  # type: ignore[arg-type]
                st.model_ids,
                text,
                st.tool_ids,
                generate_title=is_new,
            )
        except DispatchRejectedError as exc:
            self.notify(exc.reason)
            return None
        self._insert_messages([turn.user_message])
        st.pending.update(st.model_ids)
        self.publish("submitted", {"chat_id": st.chat.id, "message_id": turn.user_message.id})
        return turn

    # ------------------------------------------------------------------
    # Dispatch events
    # ------------------------------------------------------------------

    def handle_event(self, event: DispatchEvent) -> None:
        st = self.state
        current = st.chat.id if st.chat is not None else None
        match event:
            case LaneStateChanged(chat_id=chat_id, model_id=model_id, state=lane_state):
                if chat_id == current:
                    if lane_state.terminal:
                        if not self.dispatcher.pending(chat_id, model_id):
                            st.pending.discard(model_id)
                    else:
                        st.pending.add(model_id)
                self.publish(
                    "lane_state",
                    {"chat_id": chat_id, "model_id": model_id, "state": str(lane_state)},
                )
            case LanePartial(chat_id=chat_id, model_id=model_id, content=content):
                if chat_id == current:
                    st.partials[model_id] = st.partials.get(model_id, "") + content
                self.publish(
                    "partial", {"chat_id": chat_id, "model_id": model_id, "content": content}
                )
            case LaneCommitted(chat_id=chat_id, model_id=model_id, messages=messages):
                if chat_id == current:
                    st.partials.pop(model_id, None)
                    self._insert_messages(messages)
                self.publish(
                    "messages",
                    {"chat_id": chat_id, "message_ids": [m.id for m in messages]},
                )
            case LaneFinished(chat_id=chat_id, model_id=model_id, state=lane_state, message=message):
                if chat_id == current:
                    st.partials.pop(model_id, None)
                    if not self.dispatcher.pending(chat_id, model_id):
                        st.pending.discard(model_id)
                    if message is not None:
                        self._insert_messages([message])
                self.publish(
                    "lane_finished",
                    {
                        "chat_id": chat_id,
                        "model_id": model_id,
                        "state": str(lane_state),
                        "message_id": message.id if message else None,
                    },
                )
            case TitleGenerated(chat_id=chat_id, title=title):
                self._apply_generated_title(chat_id, title)
            case ModelsRefreshed(provider_id=provider_id, error=error):
                if error:
                    logger.warning("Model refresh for provider %d failed: %s", provider_id, error)
                self._repair_profile()
                self.publish(
                    "models_refreshed",
                    {
                        "provider_id": provider_id,
                        "added": event.added,
                        "removed": event.removed,
                        "error": error,
                    },
                )

    def _apply_generated_title(self, chat_id: int, title: str) -> None:
        chat = self.store.get_chat(chat_id)
        # the user may have named the chat while the title was generated
        if chat is None or chat.title is not None:
            return
        try:
            chat = self.store.rename_chat(chat_id, title)
        except PersistenceError as exc:
            self.notify(str(exc))
            return
        if self.state.chat is not None and self.state.chat.id == chat_id:
            self.state.chat = chat
        self._replace_in_history(chat)
        self.publish("title", {"chat_id": chat_id, "title": title})

    def _insert_messages(self, messages: list[ChatMessage]) -> None:
        st = self.state
        known = {m.id for m in st.messages}
        for message in messages:
            if message.id in known:
                continue
            bisect.insort(st.messages, message, key=_order_key)
            model_id = message.model_id
            if model_id is not None and model_id in st.model_ids:
                st.cursors[model_id] = len(st.messages_for(model_id)) - 1
        if any(m.model_id is None for m in messages):
            for model_id in st.model_ids:
                st.cursors[model_id] = len(st.messages_for(model_id)) - 1

    # ------------------------------------------------------------------
    # Navigation helpers
    # ------------------------------------------------------------------

    def _move_cursor(self, delta: int) -> None:
        st = self.state
        model_id = st.focused_model
        if model_id is None:
            return
        count = len(st.messages_for(model_id))
        current = st.cursors.get(model_id, max(count - 1, 0))
        st.cursors[model_id] = max(0, min(max(count - 1, 0), current + delta))

    def _focus_idle_model(self) -> None:
        st = self.state
        total = len(st.model_ids)
        for step in range(1, total + 1):
            index = (st.focus + step) % total
            if st.model_ids[index] not in st.pending:
                st.focus = index
                return

    def _select_item(self, delta: int) -> None:
        st = self.state
        model_id = st.focused_model
        if model_id is None:
            return
        count = len(st.messages_for(model_id))
        if not count:
            st.selected_item = None
            return
        if st.selected_item is None:
            st.selected_item = st.cursors.get(model_id, count - 1)
        else:
            st.selected_item = max(0, min(count - 1, st.selected_item + delta))

    def _yank(self) -> None:
        st = self.state
        model_id = st.focused_model
        if model_id is None or st.selected_item is None:
            return
        items = st.messages_for(model_id)
        if 0 <= st.selected_item < len(items):
            item = items[st.selected_item]
            st.yanked = item.content or item.error or ""
            self.publish("yank", {"text": st.yanked})

    # ------------------------------------------------------------------
    # Model dialog
    # ------------------------------------------------------------------

    def _open_model_dialog(self, target: str) -> None:
        st = self.state
        if target == "profile":
            selected = set(st.profile.model_ids) if st.profile else set()
        else:
            selected = set(st.model_ids)
        models = {m.id: m for m in self.providers.configured_models()}
        for model_id in selected - set(models):
            model = self.providers.model(model_id)
            if model is not None:
                models[model_id] = model
        items = [
            DialogItem(model_id=mid, label=self.providers.label(mid), selected=mid in selected)  # type: ignore[arg-type]
            for mid in sorted(models, key=lambda i: self.providers.label(i))  # type: ignore[arg-type]
        ]
        st.input.model_dialog = ModelDialogState(target=target, items=items)  # type: ignore[arg-type]
        st.input.surface = Surface.model_dialog
        st.input.mode = Mode.normal
        st.input.prefix = ""

    def _close_model_dialog(self, apply: bool) -> None:
        st = self.state
        dialog = st.input.model_dialog
        st.input.model_dialog = None
        if dialog is None or not apply:
            return
        chosen = {item.model_id for item in dialog.items if item.selected}
        current = st.profile.model_ids if dialog.target == "profile" and st.profile else st.model_ids
        ordered = [m for m in current if m in chosen]
        ordered += [item.model_id for item in dialog.items if item.selected and item.model_id not in ordered]

        if dialog.target == "profile":
            name = st.profile.name if st.profile else "default"
            st.profile = self.store.set_profile_models(name, ordered)
            if st.chat is None:
                st.model_ids = list(ordered)
        else:
            if st.chat is not None:
                self.store.set_chat_models(st.chat.id, ordered)  # type: ignore[arg-type]
            st.model_ids = ordered
        st.focus = 0
        for model_id in st.model_ids:
            st.cursors.setdefault(model_id, max(len(st.messages_for(model_id)) - 1, 0))

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self, keys: AsyncIterator[Key] | None = None) -> None:
        """Multiplex keystrokes and dispatch events until Quit or the keys run out.

        Without ``keys`` only dispatch events are pumped; keystrokes are then
        expected through ``handle_key`` on the same event loop.
        """
        events = self.dispatcher.events
        key_task: asyncio.Future[Key] | None = (
            asyncio.ensure_future(anext(keys)) if keys is not None else None
        )
        event_task: asyncio.Future[DispatchEvent] = asyncio.ensure_future(events.get())
        try:
            while not self.state.quit:
                waiting = {event_task} if key_task is None else {key_task, event_task}
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if event_task in done:
                    self.handle_event(event_task.result())
                    event_task = asyncio.ensure_future(events.get())
                if key_task is not None and key_task in done:
                    try:
                        key = key_task.result()
                    except StopAsyncIteration:
                        break
                    self.handle_key(key)
                    key_task = asyncio.ensure_future(anext(keys))  # type: ignore[arg-type]
        finally:
            if key_task is not None:
                key_task.cancel()
            event_task.cancel()

    def drain_events(self) -> int:
        """Apply every event already queued; returns how many were handled."""
        handled = 0
        while True:
            try:
                event = self.dispatcher.events.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            self.handle_event(event)
            handled += 1

    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        st = self.state
        return {
            "chat_id": st.chat.id if st.chat else None,
            "title": st.chat.title if st.chat else None,
            "history": [{"id": c.id, "title": c.title} for c in st.history],
            "history_index": st.history_index,
            "history_visible": st.history_visible,
            "model_ids": list(st.model_ids),
            "focused_model": st.focused_model,
            "cursors": dict(st.cursors),
            "selected_item": st.selected_item,
            "filter": st.chat_filter.keyword if st.chat_filter else None,
            "pending": sorted(st.pending),
            "partials": dict(st.partials),
            "surface": str(st.input.surface),
            "mode": str(st.input.mode),
            "prefix": st.input.prefix,
            "buffer": st.input.buffer.text,
            "notice": st.input.notice,
            "message_count": len(st.messages),
            "providers": self.provider_status(),
        }

    def provider_status(self) -> list[dict[str, Any]]:
        """Rows for the provider dialog: availability and why a provider is out."""
        rows = []
        for provider in self.providers.providers:
            pid: int = provider.id  # type: ignore[assignment]
            if not self.providers.has_credential(pid):
                reason: str | None = f"{provider.api_key_env_var} not set"
            elif provider.disabled:
                reason = "disabled"
            else:
                reason = self.providers.down_reason(pid)
            rows.append(
                {
                    "id": pid,
                    "name": provider.name,
                    "available": self.providers.is_available(pid),
                    "reason": reason,
                }
            )
        return rows

