from datetime import UTC, datetime
from enum import StrEnum

from sqlmodel import Column, Field, SQLModel, Text


class ChatRole(StrEnum):
    user = "user"
    assistant = "assistant"
    tool_result = "tool_result"


class Chat(SQLModel, table=True):
    __tablename__ = "chat"

    id: int | None = Field(default=None, primary_key=True)
    title: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)


class ChatModelLink(SQLModel, table=True):
    __tablename__ = "chat_model"

    chat_id: int = Field(foreign_key="chat.id", primary_key=True, ondelete="CASCADE")
    model_id: int = Field(foreign_key="model.id", primary_key=True)


class ChatToolLink(SQLModel, table=True):
    __tablename__ = "chat_tool"

    chat_id: int = Field(foreign_key="chat.id", primary_key=True, ondelete="CASCADE")
    tool_id: int = Field(foreign_key="tool.id", primary_key=True)


class ChatMessage(SQLModel, table=True):
    """One entry of a chat's conversation.

    Messages are ordered by ``(created_at, id)``. Messages produced by a model
    lane reuse the ``created_at`` of the user prompt that started the turn and
    record their own arrival in ``response_at``, so an answer always sorts
    directly after the prompt it answers.
    """

    __tablename__ = "chat_message"

    id: int | None = Field(default=None, primary_key=True)
    chat_id: int = Field(foreign_key="chat.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    response_at: datetime | None = None
    role: ChatRole
    content: str | None = Field(default=None, sa_column=Column(Text))
    reasoning_content: str | None = Field(default=None, sa_column=Column(Text))
    # JSON list of {"id", "name", "arguments"}; arguments stay a raw JSON string
    tool_calls: str | None = Field(default=None, sa_column=Column(Text))
    tool_call_id: str | None = None
    name: str | None = None
    # null for user prompts and for tool results produced on the user side
    model_id: int | None = Field(default=None, foreign_key="model.id", index=True)
    error: str | None = Field(default=None, sa_column=Column(Text))

    @classmethod
    def user(cls, chat_id: int, content: str) -> "ChatMessage":
        return cls(chat_id=chat_id, role=ChatRole.user, content=content)

    @classmethod
    def assistant(
        cls,
        chat_id: int,
        model_id: int,
        origin_created_at: datetime,
        *,
        content: str | None = None,
        reasoning_content: str | None = None,
        tool_calls: str | None = None,
        error: str | None = None,
    ) -> "ChatMessage":
        return cls(
            chat_id=chat_id,
            role=ChatRole.assistant,
            model_id=model_id,
            created_at=origin_created_at,
            response_at=datetime.now(UTC),
            content=content,
            reasoning_content=reasoning_content,
            tool_calls=tool_calls,
            error=error,
        )

    @classmethod
    def tool_result(
        cls,
        chat_id: int,
        model_id: int | None,
        origin_created_at: datetime,
        *,
        tool_call_id: str,
        name: str,
        content: str,
    ) -> "ChatMessage":
        return cls(
            chat_id=chat_id,
            role=ChatRole.tool_result,
            model_id=model_id,
            created_at=origin_created_at,
            response_at=datetime.now(UTC),
            tool_call_id=tool_call_id,
            name=name,
            content=content,
        )

    @property
    def is_failed(self) -> bool:
        return self.error is not None
