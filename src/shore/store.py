"""Transactional persistence for chats, messages, profiles and the model catalogue.

Every public write runs as one transaction: the row change and its search
index entry (maintained by SQLite triggers, see ``shore.database``) commit or
roll back together. Writes that touch one chat's message sequence are
serialized per chat so messages commit in the order they were produced.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

from sqlalchemy import Engine, and_, delete, literal_column, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select, text

from shore.constants import DEFAULT_PROFILE_NAME
from shore.errors import ChatNotFoundError, PersistenceError
from shore.models.chat import Chat, ChatMessage, ChatModelLink, ChatToolLink
from shore.models.profile import ChatProfile, ChatProfileModel, ChatProfileTool
from shore.models.provider import LLMModel, Provider
from shore.models.tool import Tool

logger = logging.getLogger(__name__)


class SearchScope(StrEnum):
    titles = "titles"
    content = "content"
    both = "both"


@dataclass(frozen=True)
class SearchHit:
    chat_id: int
    kind: Literal["title", "content"]
    score: float
    text: str | None
    message_id: int | None = None


@dataclass(frozen=True)
class ChatFilter:
    keyword: str = ""
    scope: SearchScope = SearchScope.both
    limit: int | None = None

    @property
    def active(self) -> bool:
        return bool(self.keyword.strip())


@dataclass
class ProfileSelection:
    id: int
    name: str
    model_ids: list[int] = field(default_factory=list)
    tool_ids: list[int] = field(default_factory=list)


def fts_phrase(query: str) -> str:
    """Quote user input as a single FTS5 phrase so it is never parsed as syntax."""
    return '"' + query.replace('"', '""') + '"'


class ChatStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._locks_guard = threading.Lock()
        self._chat_locks: dict[int, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    @contextmanager
    def _write(self, action: str) -> Iterator[Session]:
        try:
            with self._session() as session:
                yield session
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Store write failed: %s", action)
            raise PersistenceError(f"{action} did not take effect: {exc}") from exc

    @contextmanager
    def _chat_lock(self, chat_id: int) -> Iterator[None]:
        with self._locks_guard:
            lock = self._chat_locks.setdefault(chat_id, threading.Lock())
        with lock:
            yield

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def create_chat(
        self,
        title: str | None = None,
        model_ids: Iterable[int] = (),
        tool_ids: Iterable[int] = (),
    ) -> Chat:
        with self._write("create chat") as session:
            chat = Chat(title=title)
            session.add(chat)
            session.flush()
            for model_id in dict.fromkeys(model_ids):
                session.add(ChatModelLink(chat_id=chat.id, model_id=model_id))  # type: ignore[arg-type]
            for tool_id in dict.fromkeys(tool_ids):
                session.add(ChatToolLink(chat_id=chat.id, tool_id=tool_id))  # type: ignore[arg-type]
        logger.info("Created chat %s", chat.id)
        return self._reload(Chat, chat.id)  # type: ignore[arg-type]

    def get_chat(self, chat_id: int) -> Chat | None:
        with self._session() as session:
            return session.get(Chat, chat_id)

    def chat_exists(self, chat_id: int) -> bool:
        return self.get_chat(chat_id) is not None

    def rename_chat(self, chat_id: int, title: str | None) -> Chat:
        with self._chat_lock(chat_id), self._write("rename chat") as session:
            chat = session.get(Chat, chat_id)
            if chat is None:
                raise ChatNotFoundError(chat_id)
            chat.title = title
            session.add(chat)
        return self._reload(Chat, chat_id)  # type: ignore[return-value]

    def delete_chat(self, chat_id: int) -> bool:
        """Physically delete a chat with its messages and selections."""
        with self._chat_lock(chat_id), self._write("delete chat") as session:
            chat = session.get(Chat, chat_id)
            if chat is None:
                return False
            # explicit deletes so the message index triggers fire row by row
            session.exec(delete(ChatMessage).where(col(ChatMessage.chat_id) == chat_id))  # type: ignore[call-overload]
            session.exec(delete(ChatModelLink).where(col(ChatModelLink.chat_id) == chat_id))  # type: ignore[call-overload]
            session.exec(delete(ChatToolLink).where(col(ChatToolLink.chat_id) == chat_id))  # type: ignore[call-overload]
            session.delete(chat)
        logger.info("Deleted chat %d", chat_id)
        return True

    def list_chats(self, chat_filter: ChatFilter | None = None) -> list[Chat]:
        """Chats newest first, optionally restricted to a keyword match."""
        if chat_filter is not None and chat_filter.active:
            return self.search_chats(
                chat_filter.keyword, chat_filter.scope, limit=chat_filter.limit or 1000
            )
        with self._session() as session:
            stmt = select(Chat).order_by(col(Chat.created_at).desc(), col(Chat.id).desc())
            if chat_filter is not None and chat_filter.limit:
                stmt = stmt.limit(chat_filter.limit)
            return list(session.exec(stmt).all())

    def get_chat_model_ids(self, chat_id: int) -> list[int]:
        with self._session() as session:
            return list(
                session.exec(
                    select(ChatModelLink.model_id)
                    .where(ChatModelLink.chat_id == chat_id)
                    .order_by(literal_column("rowid"))
                ).all()
            )

    def get_chat_tool_ids(self, chat_id: int) -> list[int]:
        with self._session() as session:
            return list(
                session.exec(
                    select(ChatToolLink.tool_id)
                    .where(ChatToolLink.chat_id == chat_id)
                    .order_by(literal_column("rowid"))
                ).all()
            )

    def set_chat_models(self, chat_id: int, model_ids: Iterable[int]) -> None:
        with self._chat_lock(chat_id), self._write("set chat models") as session:
            if session.get(Chat, chat_id) is None:
                raise ChatNotFoundError(chat_id)
            session.exec(delete(ChatModelLink).where(col(ChatModelLink.chat_id) == chat_id))  # type: ignore[call-overload]
            for model_id in dict.fromkeys(model_ids):
                session.add(ChatModelLink(chat_id=chat_id, model_id=model_id))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, message: ChatMessage) -> ChatMessage:
        with self._chat_lock(message.chat_id), self._write("add message") as session:
            if session.get(Chat, message.chat_id) is None:
                raise ChatNotFoundError(message.chat_id)
            session.add(message)
        return self._reload(ChatMessage, message.id)  # type: ignore[return-value]

    def append_messages(
        self,
        chat_id: int,
        messages: list[ChatMessage],
        *,
        require_chat: bool = True,
    ) -> list[ChatMessage] | None:
        """Insert ``messages`` in order as one transaction.

        Returns None without writing anything when ``require_chat`` is set and
        the chat has been deleted in the meantime.
        """
        with self._chat_lock(chat_id), self._write("append messages") as session:
            if session.get(Chat, chat_id) is None:
                if require_chat:
                    logger.info("Chat %d is gone; discarding %d messages", chat_id, len(messages))
                    return None
                raise ChatNotFoundError(chat_id)
            for message in messages:
                message.chat_id = chat_id
                session.add(message)
                # flush one by one so ids follow generation order
                session.flush()
        ids = [m.id for m in messages]
        with self._session() as session:
            rows = session.exec(select(ChatMessage).where(col(ChatMessage.id).in_(ids))).all()
            by_id = {m.id: m for m in rows}
        return [by_id[i] for i in ids]

    def update_message_content(self, message_id: int, content: str | None) -> ChatMessage:
        with self._session() as session:
            existing = session.get(ChatMessage, message_id)
        if existing is None:
            raise PersistenceError(f"Message {message_id} not found")
        with self._chat_lock(existing.chat_id), self._write("update message") as session:
            message = session.get(ChatMessage, message_id)
            if message is None:
                raise PersistenceError(f"Message {message_id} not found")
            message.content = content
            session.add(message)
        return self._reload(ChatMessage, message_id)  # type: ignore[return-value]

    def delete_message(self, message_id: int) -> bool:
        with self._session() as session:
            existing = session.get(ChatMessage, message_id)
        if existing is None:
            return False
        with self._chat_lock(existing.chat_id), self._write("delete message") as session:
            message = session.get(ChatMessage, message_id)
            if message is None:
                return False
            session.delete(message)
        return True

    def list_messages(self, chat_id: int) -> list[ChatMessage]:
        with self._session() as session:
            return list(
                session.exec(
                    select(ChatMessage)
                    .where(ChatMessage.chat_id == chat_id)
                    .order_by(col(ChatMessage.created_at), col(ChatMessage.id))
                ).all()
            )

    def conversation(self, chat_id: int, model_id: int, upto: ChatMessage) -> list[ChatMessage]:
        """Context a model lane sends: user-side messages plus the model's own,
        up to and including ``upto`` in conversation order.

        The model's messages from the turn ``upto`` started (its tool rounds)
        share ``upto.created_at`` and are included.
        """
        with self._session() as session:
            return list(
                session.exec(
                    select(ChatMessage)
                    .where(
                        ChatMessage.chat_id == chat_id,
                        or_(
                            col(ChatMessage.model_id).is_(None),
                            col(ChatMessage.model_id) == model_id,
                        ),
                        or_(
                            col(ChatMessage.created_at) < upto.created_at,
                            and_(
                                col(ChatMessage.created_at) == upto.created_at,
                                or_(
                                    col(ChatMessage.id) <= upto.id,
                                    col(ChatMessage.model_id) == model_id,
                                ),
                            ),
                        ),
                    )
                    .order_by(col(ChatMessage.created_at), col(ChatMessage.id))
                ).all()
            )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        scope: SearchScope = SearchScope.both,
        limit: int = 100,
    ) -> list[SearchHit]:
        """Rank matches by bm25 relevance; always reads the live index."""
        if not query.strip():
            return []
        phrase = fts_phrase(query.strip())
        hits: list[SearchHit] = []
        with self._session() as session:
            if scope in (SearchScope.titles, SearchScope.both):
                rows = session.exec(  # type: ignore[call-overload]
                    text(
                        "SELECT c.id, bm25(chat_fts) AS score, c.title "
                        "FROM chat_fts JOIN chat c ON c.id = chat_fts.rowid "
                        "WHERE chat_fts MATCH :q ORDER BY score LIMIT :limit"
                    ),
                    params={"q": phrase, "limit": limit},
                ).all()
                hits.extend(
                    SearchHit(chat_id=r[0], kind="title", score=r[1], text=r[2]) for r in rows
                )
            if scope in (SearchScope.content, SearchScope.both):
                rows = session.exec(  # type: ignore[call-overload]
                    text(
                        "SELECT m.chat_id, bm25(chat_message_fts) AS score, m.content, m.id "
                        "FROM chat_message_fts JOIN chat_message m ON m.id = chat_message_fts.rowid "
                        "WHERE chat_message_fts MATCH :q ORDER BY score LIMIT :limit"
                    ),
                    params={"q": phrase, "limit": limit},
                ).all()
                hits.extend(
                    SearchHit(chat_id=r[0], kind="content", score=r[1], text=r[2], message_id=r[3])
                    for r in rows
                )
        hits.sort(key=lambda h: h.score)
        return hits[:limit]

    def search_chats(
        self,
        query: str,
        scope: SearchScope = SearchScope.both,
        limit: int = 1000,
    ) -> list[Chat]:
        """Distinct chats with a match, best-ranked first."""
        ordered_ids = list(dict.fromkeys(h.chat_id for h in self.search(query, scope, limit)))
        if not ordered_ids:
            return []
        with self._session() as session:
            chats = session.exec(select(Chat).where(col(Chat.id).in_(ordered_ids))).all()
        by_id = {c.id: c for c in chats}
        return [by_id[i] for i in ordered_ids if i in by_id]

    # ------------------------------------------------------------------
    # Providers, models, tools
    # ------------------------------------------------------------------

    def list_providers(self) -> list[Provider]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Provider).where(col(Provider.deprecated).is_(False)).order_by(Provider.id)
                ).all()
            )

    def list_models(self, include_deprecated: bool = False) -> list[LLMModel]:
        with self._session() as session:
            stmt = select(LLMModel)
            if not include_deprecated:
                stmt = stmt.where(col(LLMModel.deprecated).is_(False))
            return list(session.exec(stmt.order_by(LLMModel.provider_id, LLMModel.model)).all())

    def models_for_provider(self, provider_id: int) -> list[LLMModel]:
        with self._session() as session:
            return list(
                session.exec(
                    select(LLMModel)
                    .where(LLMModel.provider_id == provider_id, col(LLMModel.deprecated).is_(False))
                    .order_by(LLMModel.id)
                ).all()
            )

    def sync_provider_models(
        self,
        provider_id: int,
        new_names: Iterable[str],
        removed_ids: Iterable[int],
        now: int,
    ) -> tuple[list[LLMModel], list[int]]:
        """Insert newly listed models, deprecate vanished ones, stamp the refresh.

        Models are never deleted; a deprecated model that is listed again is
        reactivated instead of duplicated.
        """
        added: list[LLMModel] = []
        removed: list[int] = []
        with self._write("sync provider models") as session:
            provider = session.get(Provider, provider_id)
            if provider is None:
                raise PersistenceError(f"Provider {provider_id} not found")
            for name in dict.fromkeys(new_names):
                model = session.exec(
                    select(LLMModel).where(
                        LLMModel.provider_id == provider_id, LLMModel.model == name
                    )
                ).first()
                if model is None:
                    model = LLMModel(provider_id=provider_id, model=name)
                else:
                    model.deprecated = False
                session.add(model)
                session.flush()
                added.append(model)
            for model_id in removed_ids:
                model = session.get(LLMModel, model_id)
                if model is not None and model.provider_id == provider_id:
                    model.deprecated = True
                    session.add(model)
                    removed.append(model_id)
            provider.last_models_update = now
            session.add(provider)
        return added, removed

    def list_tools(self) -> list[Tool]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Tool)
                    .where(col(Tool.disabled).is_(False), col(Tool.deprecated).is_(False))
                    .order_by(Tool.id)
                ).all()
            )

    def get_tools(self, tool_ids: Iterable[int]) -> list[Tool]:
        ids = list(tool_ids)
        if not ids:
            return []
        with self._session() as session:
            return list(session.exec(select(Tool).where(col(Tool.id).in_(ids))).all())

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def _profile_selection(self, session: Session, profile: ChatProfile) -> ProfileSelection:
        model_ids = session.exec(
            select(ChatProfileModel.model_id)
            .where(ChatProfileModel.profile_id == profile.id)
            .order_by(ChatProfileModel.display_order)
        ).all()
        tool_ids = session.exec(
            select(ChatProfileTool.tool_id).where(ChatProfileTool.profile_id == profile.id)
        ).all()
        return ProfileSelection(
            id=profile.id,  # type: ignore[arg-type]
            name=profile.name,
            model_ids=list(model_ids),
            tool_ids=list(tool_ids),
        )

    def get_profile(self, name: str) -> ProfileSelection | None:
        with self._session() as session:
            profile = session.exec(select(ChatProfile).where(ChatProfile.name == name)).first()
            return self._profile_selection(session, profile) if profile else None

    def get_default_profile(self) -> ProfileSelection | None:
        with self._session() as session:
            profile = session.exec(
                select(ChatProfile).where(col(ChatProfile.is_default).is_(True))
            ).first()
            return self._profile_selection(session, profile) if profile else None

    def save_profile(
        self,
        name: str,
        model_ids: Iterable[int],
        tool_ids: Iterable[int] = (),
        *,
        is_default: bool = False,
    ) -> ProfileSelection:
        """Create or replace a named profile's ordered model and tool selections."""
        with self._write("save profile") as session:
            profile = session.exec(select(ChatProfile).where(ChatProfile.name == name)).first()
            if profile is None:
                profile = ChatProfile(name=name, is_default=is_default)
                session.add(profile)
                session.flush()
            elif is_default and not profile.is_default:
                profile.is_default = True
                session.add(profile)
            if is_default:
                for other in session.exec(
                    select(ChatProfile).where(
                        col(ChatProfile.is_default).is_(True), ChatProfile.id != profile.id
                    )
                ).all():
                    other.is_default = False
                    session.add(other)
            session.exec(  # type: ignore[call-overload]
                delete(ChatProfileModel).where(col(ChatProfileModel.profile_id) == profile.id)
            )
            session.exec(  # type: ignore[call-overload]
                delete(ChatProfileTool).where(col(ChatProfileTool.profile_id) == profile.id)
            )
            for order, model_id in enumerate(dict.fromkeys(model_ids)):
                session.add(
                    ChatProfileModel(
                        profile_id=profile.id,  # type: ignore[arg-type]
                        model_id=model_id,
                        display_order=order,
                    )
                )
            for tool_id in dict.fromkeys(tool_ids):
                session.add(ChatProfileTool(profile_id=profile.id, tool_id=tool_id))  # type: ignore[arg-type]
            session.flush()
            selection = self._profile_selection(session, profile)
        return selection

    def set_profile_models(self, name: str, model_ids: Iterable[int]) -> ProfileSelection:
        existing = self.get_profile(name)
        tool_ids = existing.tool_ids if existing else []
        is_default = name == DEFAULT_PROFILE_NAME if existing is None else False
        return self.save_profile(name, model_ids, tool_ids, is_default=is_default)

    def ensure_default_profile(
        self,
        available_model_ids: set[int],
        fallback_model_id: int | None,
        tool_ids: Iterable[int] = (),
    ) -> ProfileSelection:
        """Return the default profile with unavailable models pruned.

        When no usable model remains (or the profile does not exist yet) the
        profile is reset to ``fallback_model_id`` when one is given. ``tool_ids``
        only seed a profile that is created here.
        """
        profile = self.get_default_profile()
        if profile is None:
            logger.info("Default chat profile does not exist. Creating it...")
            model_ids = [fallback_model_id] if fallback_model_id is not None else []
            return self.save_profile(DEFAULT_PROFILE_NAME, model_ids, tool_ids, is_default=True)

        retained = [m for m in profile.model_ids if m in available_model_ids]
        if retained == profile.model_ids and retained:
            return profile
        if not retained and fallback_model_id is not None:
            logger.info("Default chat profile has no usable model; using %d", fallback_model_id)
            retained = [fallback_model_id]
        elif not retained:
            logger.warning("No suitable model found for the default chat profile")
        return self.save_profile(profile.name, retained, profile.tool_ids, is_default=True)

    # ------------------------------------------------------------------

    def _reload(self, model: type, ident: int | None) -> object:
        with self._session() as session:
            return session.get(model, ident)
