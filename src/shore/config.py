import os
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

DEFAULT_TITLE_PROMPT = (
    "Generate a concise title for the above conversation. It should be no more than 6 words."
)


def _default_data_dir() -> Path:
    if env := os.environ.get("SHORE_DATA_DIR"):
        return Path(env)
    return Path.home() / ".shore"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SHORE_",
        extra="ignore",
    )

    data_dir: Path = Path("")
    database: str = "default"
    db_path: Path = Path("")
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    title_prompt: str = DEFAULT_TITLE_PROMPT
    max_tool_iterations: int = 5
    remove_think_tokens: bool = False
    history_limit: int = 1000
    refresh_models_on_start: bool = True
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8426

    @model_validator(mode="after")
    def _resolve_data_paths(self) -> "Settings":
        if self.data_dir == Path(""):
            self.data_dir = _default_data_dir()
        if self.db_path == Path(""):
            self.db_path = self.data_dir / f"{self.database}.db"
        return self


settings = Settings()
