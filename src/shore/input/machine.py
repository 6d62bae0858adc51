"""Modal keystroke interpretation.

``handle_key`` is a pure function: it copies the incoming state, applies one
keystroke and returns the new state together with the commands the
controller should carry out. The same key can mean different things
depending on surface, mode and whether the edit buffer is empty; in Normal
mode an empty buffer turns keys into navigation, a non-empty one into
buffer editing.
"""

from __future__ import annotations

import copy

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
from shore.input.state import InputState, Mode, ModelDialogState, Surface

_DOUBLE_TAP = {"g", "d", "c"}
_DIALOG_TOGGLE = {"h", "l", "space", "enter"}


def handle_key(state: InputState, key: Key) -> tuple[InputState, list[Command]]:
    state = copy.deepcopy(state)
    commands: list[Command] = []
    handler = _SURFACES[state.surface]
    handler(state, key, commands)
    return state, commands


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _enter_insert(state: InputState) -> None:
    state.mode = Mode.insert
    state.prefix = ""
    state.last_key = None


def _to_chat(state: InputState) -> None:
    state.surface = Surface.chat
    state.mode = Mode.normal
    state.prefix = ""
    state.last_key = None


def _clear_filter(state: InputState, commands: list[Command]) -> None:
    state.filter_active = False
    state.search_query = ""
    commands.append(ClearFilter())


def _consume_count(state: InputState) -> int:
    n = state.count
    state.prefix = ""
    return n


# ---------------------------------------------------------------------------
# Chat surface
# ---------------------------------------------------------------------------


def _global_chord(state: InputState, key: Key, commands: list[Command]) -> bool:
    chord = key.chord
    if chord == "ctrl+m":
        commands.append(OpenModelDialog("chat"))
    elif chord == "ctrl+shift+m":
        commands.append(OpenModelDialog("profile"))
    elif chord == "ctrl+p":
        state.surface = Surface.provider_dialog
    elif chord == "ctrl+h":
        commands.append(ToggleHistoryPane())
    else:
        return False
    state.prefix = ""
    state.last_key = None
    return True


def _chat(state: InputState, key: Key, commands: list[Command]) -> None:
    if _global_chord(state, key, commands):
        return
    if state.mode == Mode.insert:
        _chat_insert(state, key, commands)
    elif state.mode == Mode.search:
        _chat_search(state, key, commands)
    else:
        _chat_normal(state, key, commands)


def _submit(state: InputState, commands: list[Command]) -> None:
    text = state.buffer.text
    if text.strip():
        commands.append(SubmitPrompt(text))
        state.buffer.clear()


def _chat_insert(state: InputState, key: Key, commands: list[Command]) -> None:
    buf = state.buffer
    if key.chord == "esc":
        state.mode = Mode.normal
    elif key.chord == "enter":
        _submit(state, commands)
    elif key.chord == "shift+enter":
        buf.insert("\n")
    elif key.chord == "backspace":
        buf.backspace()
    elif key.chord == "left":
        buf.move(-1)
    elif key.chord == "right":
        buf.move(1)
    elif key.char is not None:
        buf.insert(key.char)


def _chat_search(state: InputState, key: Key, commands: list[Command]) -> None:
    if key.chord == "esc":
        state.mode = Mode.normal
        _clear_filter(state, commands)
    elif key.chord == "enter":
        state.mode = Mode.normal
        query = state.search_query
        if query.strip():
            state.filter_active = True
            commands.append(ApplyKeywordFilter(query))
        else:
            _clear_filter(state, commands)
    elif key.chord == "backspace":
        state.search_query = state.search_query[:-1]
        commands.append(UpdateSearch(state.search_query))
    elif key.char is not None:
        state.search_query += key.char
        commands.append(UpdateSearch(state.search_query))


def _chat_normal(state: InputState, key: Key, commands: list[Command]) -> None:
    name = key.chord
    previous = state.last_key
    state.last_key = None

    if key.is_digit and not (name == "0" and not state.prefix):
        state.prefix += name
        return

    if _chat_normal_common(state, key, commands):
        state.prefix = ""
        return

    if state.buffer.is_empty:
        _navigate(state, name, previous, commands)
    else:
        _edit_buffer(state, name, previous)
    state.prefix = ""


def _chat_normal_common(state: InputState, key: Key, commands: list[Command]) -> bool:
    """Keys that behave the same whether or not the buffer is empty."""
    name = key.chord
    buf = state.buffer
    if name == "i":
        _enter_insert(state)
    elif name == "a":
        buf.move(1)
        _enter_insert(state)
    elif name == "I":
        buf.line_start()
        _enter_insert(state)
    elif name == "A":
        buf.line_end()
        _enter_insert(state)
    elif name == "n":
        commands.append(NewChat())
        _enter_insert(state)
    elif name == "z":
        commands.append(MoveChat(_consume_count(state)))
    elif name == "q":
        commands.append(MoveChat(-_consume_count(state)))
    elif name == "[":
        commands.append(SelectItem(-1))
    elif name == "]":
        commands.append(SelectItem(1))
    elif name == "y":
        commands.append(YankItem())
    elif name == "/":
        state.mode = Mode.search
        state.search_query = ""
    elif name == "enter":
        if state.filter_active:
            _clear_filter(state, commands)
        else:
            _submit(state, commands)
    elif name == "esc":
        if state.filter_active:
            _clear_filter(state, commands)
        else:
            commands.append(ClearItemSelection())
    elif name == "ctrl+t":
        commands.append(OpenTitleEdit())
    elif name == "Q":
        commands.append(Quit())
    else:
        return False
    return True


def _navigate(state: InputState, name: str, previous: str | None, commands: list[Command]) -> None:
    n = state.count
    if name == "0":
        commands.append(SelectModelEdge("first"))
    elif name == "j":
        commands.append(MoveSelection(n))
    elif name == "k":
        commands.append(MoveSelection(-n))
    elif name == "g":
        if previous == "g":
            commands.append(JumpMessage("first"))
        else:
            state.last_key = "g"
    elif name == "G":
        commands.append(JumpMessage("last"))
    elif name == "h":
        commands.append(CycleModel(-n))
    elif name == "l":
        commands.append(CycleModel(n))
    elif name == "{":
        commands.append(CycleModel(-n, wrap=True))
    elif name == "}":
        commands.append(CycleModel(n, wrap=True))
    elif name == "$":
        commands.append(SelectModelEdge("last"))
    elif name == "*":
        commands.append(CycleIdleModel())
    elif name in ("x", "d"):
        if state.filter_active:
            _clear_filter(state, commands)
        else:
            state.surface = Surface.delete_confirm


def _edit_buffer(state: InputState, name: str, previous: str | None) -> None:
    buf = state.buffer
    n = state.count
    if name == "h":
        buf.move(-n)
    elif name == "l":
        buf.move(n)
    elif name == "0":
        buf.line_start()
    elif name == "$":
        buf.line_end()
    elif name == "x":
        for _ in range(n):
            buf.delete_char()
    elif name == "j":
        buf.line_down(n)
    elif name == "k":
        buf.line_up(n)
    elif name in _DOUBLE_TAP:
        if previous != name:
            state.last_key = name
        elif name == "d":
            buf.clear()
        elif name == "c":
            buf.clear()
            _enter_insert(state)


# ---------------------------------------------------------------------------
# Model dialog
# ---------------------------------------------------------------------------


def _model_dialog(state: InputState, key: Key, commands: list[Command]) -> None:
    dialog = state.model_dialog
    if dialog is None:
        _to_chat(state)
        return
    if state.mode == Mode.search:
        _dialog_search(state, dialog, key)
    elif state.mode == Mode.visual:
        _dialog_visual(state, dialog, key, commands)
    else:
        _dialog_normal(state, dialog, key, commands)


def _dialog_normal(
    state: InputState, dialog: ModelDialogState, key: Key, commands: list[Command]
) -> None:
    name = key.chord
    if key.is_digit and not (name == "0" and not state.prefix):
        state.prefix += name
        return
    n = _consume_count(state)
    if name == "0":
        dialog.cursor = 0
    elif name == "j":
        dialog.move(n)
    elif name == "k":
        dialog.move(-n)
    elif name in _DIALOG_TOGGLE:
        item = dialog.current()
        if item is not None:
            commands.append(ToggleModel(item.model_id))
    elif name == "v":
        state.mode = Mode.visual
        dialog.anchor = dialog.cursor
    elif name == "/":
        state.mode = Mode.search
        dialog.query = ""
        dialog.cursor = 0
    elif name in ("x", "q", "c", "d"):
        dialog.query = ""
        dialog.cursor = 0
    elif name == "esc":
        if dialog.query:
            dialog.query = ""
            dialog.cursor = 0
        else:
            commands.append(CloseModelDialog(apply=True))
            _to_chat(state)


def _dialog_search(state: InputState, dialog: ModelDialogState, key: Key) -> None:
    name = key.chord
    if name == "enter":
        state.mode = Mode.normal
    elif name == "esc":
        dialog.query = ""
        dialog.cursor = 0
        state.mode = Mode.normal
    elif name == "backspace":
        dialog.query = dialog.query[:-1]
        dialog.cursor = 0
    elif key.char is not None:
        dialog.query += key.char
        dialog.cursor = 0


def _dialog_visual(
    state: InputState, dialog: ModelDialogState, key: Key, commands: list[Command]
) -> None:
    name = key.chord
    if key.is_digit and not (name == "0" and not state.prefix):
        state.prefix += name
        return
    n = _consume_count(state)
    if name == "j":
        dialog.move(n)
    elif name == "k":
        dialog.move(-n)
    elif name in _DIALOG_TOGGLE:
        commands.extend(ToggleModel(item.model_id) for item in dialog.visual_range())
        dialog.anchor = None
        state.mode = Mode.normal
    elif name in ("esc", "v"):
        dialog.anchor = None
        state.mode = Mode.normal


# ---------------------------------------------------------------------------
# Small surfaces
# ---------------------------------------------------------------------------


def _delete_confirm(state: InputState, key: Key, commands: list[Command]) -> None:
    if key.chord in ("y", "Y", "enter"):
        commands.append(DeleteChat())
        _to_chat(state)
    elif key.chord in ("n", "N", "esc"):
        _to_chat(state)


def _title_edit(state: InputState, key: Key, commands: list[Command]) -> None:
    buf = state.title_buffer
    name = key.chord
    if name == "enter":
        title = buf.text.strip()
        if title:
            commands.append(RenameChat(title))
            buf.clear()
            _to_chat(state)
    elif name == "esc":
        buf.clear()
        _to_chat(state)
    elif name == "backspace":
        buf.backspace()
    elif name == "left":
        buf.move(-1)
    elif name == "right":
        buf.move(1)
    elif key.char is not None:
        buf.insert(key.char)


def _provider_dialog(state: InputState, key: Key, commands: list[Command]) -> None:
    if key.chord in ("esc", "q"):
        _to_chat(state)


def _notice(state: InputState, key: Key, commands: list[Command]) -> None:
    state.notice = None
    _to_chat(state)


_SURFACES = {
    Surface.chat: _chat,
    Surface.model_dialog: _model_dialog,
    Surface.provider_dialog: _provider_dialog,
    Surface.delete_confirm: _delete_confirm,
    Surface.title_edit: _title_edit,
    Surface.notice: _notice,
}
