from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class Tool(SQLModel, table=True):
    """A tool a chat may expose to its models once attached.

    ``invocation`` names how the tool runs; ``builtin:<name>`` selects a tool
    shipped with shore. Rows with any other invocation are never offered to a
    model.
    """

    __tablename__ = "tool"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    description: str = ""
    invocation: str
    disabled: bool = False
    deprecated: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
