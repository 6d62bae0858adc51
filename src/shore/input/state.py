from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal


class Surface(StrEnum):
    chat = "chat"
    model_dialog = "model_dialog"
    provider_dialog = "provider_dialog"
    delete_confirm = "delete_confirm"
    title_edit = "title_edit"
    notice = "notice"


class Mode(StrEnum):
    normal = "normal"
    insert = "insert"
    search = "search"
    visual = "visual"


@dataclass
class EditBuffer:
    """Multi-line text with a cursor measured in characters."""

    text: str = ""
    cursor: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()

    def clear(self) -> None:
        self.text = ""
        self.cursor = 0

    def insert(self, s: str) -> None:
        self.text = self.text[: self.cursor] + s + self.text[self.cursor :]
        self.cursor += len(s)

    def backspace(self) -> None:
        if self.cursor > 0:
            self.text = self.text[: self.cursor - 1] + self.text[self.cursor :]
            self.cursor -= 1

    def delete_char(self) -> None:
        if self.cursor < len(self.text):
            self.text = self.text[: self.cursor] + self.text[self.cursor + 1 :]
        self.cursor = min(self.cursor, max(len(self.text) - 1, 0))

    def move(self, delta: int) -> None:
        self.cursor = max(0, min(len(self.text), self.cursor + delta))

    def _line_bounds(self) -> tuple[int, int]:
        start = self.text.rfind("\n", 0, self.cursor) + 1
        end = self.text.find("\n", self.cursor)
        return start, len(self.text) if end == -1 else end

    def line_start(self) -> None:
        self.cursor = self._line_bounds()[0]

    def line_end(self) -> None:
        self.cursor = self._line_bounds()[1]

    def line_down(self, count: int = 1) -> None:
        for _ in range(count):
            start, end = self._line_bounds()
            if end >= len(self.text):
                return
            column = self.cursor - start
            next_end = self.text.find("\n", end + 1)
            next_end = len(self.text) if next_end == -1 else next_end
            self.cursor = min(end + 1 + column, next_end)

    def line_up(self, count: int = 1) -> None:
        for _ in range(count):
            start, _end = self._line_bounds()
            if start == 0:
                return
            column = self.cursor - start
            prev_start = self.text.rfind("\n", 0, start - 1) + 1
            self.cursor = min(prev_start + column, start - 1)


@dataclass
class DialogItem:
    model_id: int
    label: str
    selected: bool = False


@dataclass
class ModelDialogState:
    target: Literal["chat", "profile"]
    items: list[DialogItem] = field(default_factory=list)
    cursor: int = 0
    query: str = ""
    anchor: int | None = None

    def visible(self) -> list[DialogItem]:
        if not self.query:
            return list(self.items)
        needle = self.query.lower()
        return [item for item in self.items if needle in item.label.lower()]

    def current(self) -> DialogItem | None:
        items = self.visible()
        return items[self.cursor] if 0 <= self.cursor < len(items) else None

    def visual_range(self) -> list[DialogItem]:
        items = self.visible()
        if self.anchor is None:
            return [items[self.cursor]] if 0 <= self.cursor < len(items) else []
        lo, hi = sorted((self.anchor, self.cursor))
        return items[lo : hi + 1]

    def move(self, delta: int) -> None:
        count = len(self.visible())
        self.cursor = max(0, min(count - 1, self.cursor + delta)) if count else 0


@dataclass
class InputState:
    surface: Surface = Surface.chat
    mode: Mode = Mode.insert
    prefix: str = ""
    last_key: str | None = None
    buffer: EditBuffer = field(default_factory=EditBuffer)
    title_buffer: EditBuffer = field(default_factory=EditBuffer)
    search_query: str = ""
    filter_active: bool = False
    model_dialog: ModelDialogState | None = None
    notice: str | None = None

    @property
    def count(self) -> int:
        return int(self.prefix) if self.prefix else 1
