"""Commands the input state machine emits for the controller to apply."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class SubmitPrompt:
    text: str


@dataclass(frozen=True)
class MoveSelection:
    """Move the message cursor of the focused model by ``delta``."""

    delta: int


@dataclass(frozen=True)
class JumpMessage:
    to: Literal["first", "last"]


@dataclass(frozen=True)
class CycleModel:
    delta: int
    wrap: bool = False


@dataclass(frozen=True)
class SelectModelEdge:
    edge: Literal["first", "last"]


@dataclass(frozen=True)
class CycleIdleModel:
    """Focus the next model that has no pending lane."""


@dataclass(frozen=True)
class MoveChat:
    delta: int


@dataclass(frozen=True)
class NewChat:
    pass


@dataclass(frozen=True)
class DeleteChat:
    pass


@dataclass(frozen=True)
class UpdateSearch:
    query: str


@dataclass(frozen=True)
class ApplyKeywordFilter:
    query: str


@dataclass(frozen=True)
class ClearFilter:
    pass


@dataclass(frozen=True)
class SelectItem:
    delta: int


@dataclass(frozen=True)
class ClearItemSelection:
    pass


@dataclass(frozen=True)
class YankItem:
    pass


@dataclass(frozen=True)
class OpenModelDialog:
    target: Literal["chat", "profile"]


@dataclass(frozen=True)
class ToggleModel:
    model_id: int


@dataclass(frozen=True)
class CloseModelDialog:
    apply: bool = True


@dataclass(frozen=True)
class ToggleHistoryPane:
    pass


@dataclass(frozen=True)
class OpenTitleEdit:
    pass


@dataclass(frozen=True)
class RenameChat:
    title: str


@dataclass(frozen=True)
class Quit:
    pass


Command = (
    SubmitPrompt
    | MoveSelection
    | JumpMessage
    | CycleModel
    | SelectModelEdge
    | CycleIdleModel
    | MoveChat
    | NewChat
    | DeleteChat
    | UpdateSearch
    | ApplyKeywordFilter
    | ClearFilter
    | SelectItem
    | ClearItemSelection
    | YankItem
    | OpenModelDialog
    | ToggleModel
    | CloseModelDialog
    | ToggleHistoryPane
    | OpenTitleEdit
    | RenameChat
    | Quit
)
