from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class ChatProfile(SQLModel, table=True):
    """Named template of model and tool selections applied to new chats."""

    __tablename__ = "chat_profile"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    is_default: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChatProfileModel(SQLModel, table=True):
    __tablename__ = "chat_profile_model"

    profile_id: int = Field(foreign_key="chat_profile.id", primary_key=True, ondelete="CASCADE")
    model_id: int = Field(foreign_key="model.id", primary_key=True)
    display_order: int = 0


class ChatProfileTool(SQLModel, table=True):
    __tablename__ = "chat_profile_tool"

    profile_id: int = Field(foreign_key="chat_profile.id", primary_key=True, ondelete="CASCADE")
    tool_id: int = Field(foreign_key="tool.id", primary_key=True)
