import logging
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, event
from sqlmodel import Session, SQLModel, create_engine, select, text

import shore.models  # noqa: F401 - register all tables with SQLModel
from shore.config import settings
from shore.constants import DEFAULT_PROVIDERS, DEFAULT_TOOLS
from shore.models.provider import LLMModel, Provider
from shore.models.tool import Tool

logger = logging.getLogger(__name__)

# External-content FTS5 indexes. The triggers run inside the transaction that
# mutates the source row, so the index can never be observed out of step.
_FTS_TABLES: dict[str, list[str]] = {
    "chat_fts": [
        "CREATE VIRTUAL TABLE IF NOT EXISTS chat_fts USING fts5("
        "title, content='chat', content_rowid='id')",
        "CREATE TRIGGER IF NOT EXISTS chat_ai AFTER INSERT ON chat BEGIN "
        "INSERT INTO chat_fts(rowid, title) VALUES (new.id, new.title); END",
        "CREATE TRIGGER IF NOT EXISTS chat_ad AFTER DELETE ON chat BEGIN "
        "INSERT INTO chat_fts(chat_fts, rowid, title) VALUES ('delete', old.id, old.title); END",
        "CREATE TRIGGER IF NOT EXISTS chat_au AFTER UPDATE OF title ON chat BEGIN "
        "INSERT INTO chat_fts(chat_fts, rowid, title) VALUES ('delete', old.id, old.title); "
        "INSERT INTO chat_fts(rowid, title) VALUES (new.id, new.title); END",
    ],
    "chat_message_fts": [
        "CREATE VIRTUAL TABLE IF NOT EXISTS chat_message_fts USING fts5("
        "content, content='chat_message', content_rowid='id')",
        "CREATE TRIGGER IF NOT EXISTS chat_message_ai AFTER INSERT ON chat_message BEGIN "
        "INSERT INTO chat_message_fts(rowid, content) VALUES (new.id, new.content); END",
        "CREATE TRIGGER IF NOT EXISTS chat_message_ad AFTER DELETE ON chat_message BEGIN "
        "INSERT INTO chat_message_fts(chat_message_fts, rowid, content) "
        "VALUES ('delete', old.id, old.content); END",
        "CREATE TRIGGER IF NOT EXISTS chat_message_au AFTER UPDATE OF content ON chat_message "
        "BEGIN "
        "INSERT INTO chat_message_fts(chat_message_fts, rowid, content) "
        "VALUES ('delete', old.id, old.content); "
        "INSERT INTO chat_message_fts(rowid, content) VALUES (new.id, new.content); END",
    ],
}


def _set_sqlite_pragma(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def make_engine(url: str, **kwargs: Any) -> Engine:
    """Create a SQLite engine with foreign keys enforced on every connection."""
    connect_args = {"timeout": 30, "check_same_thread": False}
    connect_args.update(kwargs.pop("connect_args", {}))
    eng = create_engine(url, echo=False, connect_args=connect_args, **kwargs)
    event.listen(eng, "connect", _set_sqlite_pragma)
    return eng


def engine_for_path(db_path: Path) -> Engine:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return make_engine(f"sqlite:///{db_path}")


engine = engine_for_path(settings.db_path)


def _create_search_indexes(eng: Engine) -> None:
    with eng.begin() as conn:
        existing = {
            row[0]
            for row in conn.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'table'")
            ).all()
        }
        for table, statements in _FTS_TABLES.items():
            for ddl in statements:
                conn.execute(text(ddl))
            if table not in existing:
                # index rows that predate the index itself
                logger.info("Building search index %s", table)
                conn.execute(text(f"INSERT INTO {table}({table}) VALUES ('rebuild')"))


def _seed_defaults(eng: Engine) -> None:
    """Write the curated providers, models and tools into an empty store."""
    with Session(eng) as session:
        if session.exec(select(Provider)).first() is not None:
            return
        logger.info("Seeding %d default providers", len(DEFAULT_PROVIDERS))
        for seed in DEFAULT_PROVIDERS:
            provider = Provider(
                name=seed["name"],
                base_url=seed["base_url"],
                api_key_env_var=seed["api_key_env_var"],
                models_from_list=seed.get("models_from_list", False),
                availability_requires_models_response=seed.get(
                    "availability_requires_models_response", False
                ),
                models_refresh_interval_seconds=seed.get("models_refresh_interval_seconds", 86400),
            )
            session.add(provider)
            session.flush()
            for name in seed["models"]:
                session.add(LLMModel(provider_id=provider.id, model=name))  # type: ignore[arg-type]
        if session.exec(select(Tool)).first() is None:
            for tool_seed in DEFAULT_TOOLS:
                session.add(Tool(**tool_seed))
        session.commit()


def create_db_and_tables(eng: Engine | None = None) -> None:
    eng = eng or engine
    SQLModel.metadata.create_all(eng)
    with eng.connect() as conn:
        conn.execute(text("PRAGMA journal_mode=WAL"))
        conn.commit()
    _create_search_indexes(eng)
    _seed_defaults(eng)
