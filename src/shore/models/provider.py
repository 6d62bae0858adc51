from datetime import UTC, datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel


class ApiShape(StrEnum):
    """Wire shape a model's provider speaks; selects the completion implementation."""

    openai_chat = "openai_chat"


class Provider(SQLModel, table=True):
    __tablename__ = "provider"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    base_url: str
    # Empty string means the provider needs no credential (local servers).
    api_key_env_var: str = ""
    disabled: bool = False
    deprecated: bool = False
    models_from_list: bool = False
    availability_requires_models_response: bool = False
    last_models_update: int = 0
    models_refresh_interval_seconds: int = 86400
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class LLMModel(SQLModel, table=True):
    __tablename__ = "model"

    id: int | None = Field(default=None, primary_key=True)
    provider_id: int = Field(foreign_key="provider.id", index=True)
    model: str = Field(index=True)
    api_shape: ApiShape = ApiShape.openai_chat
    disabled: bool = False
    deprecated: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
