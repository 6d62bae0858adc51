from fastapi import APIRouter, Depends, HTTPException, Query

from shore.models.chat import Chat, ChatMessage
from shore.routers.deps import get_store
from shore.schemas.session import ChatMessageOut, ChatOut, SearchHitOut
from shore.store import ChatFilter, ChatStore, SearchHit, SearchScope

router = APIRouter(tags=["chats"])


@router.get("/chats", response_model=list[ChatOut])
def list_chats(
    q: str = "",
    scope: SearchScope = SearchScope.both,
    limit: int = Query(default=100, ge=1, le=1000),
    store: ChatStore = Depends(get_store),
) -> list[Chat]:
    return store.list_chats(ChatFilter(keyword=q, scope=scope, limit=limit))


@router.get("/chats/{chat_id}/messages", response_model=list[ChatMessageOut])
def chat_messages(chat_id: int, store: ChatStore = Depends(get_store)) -> list[ChatMessage]:
    if not store.chat_exists(chat_id):
        raise HTTPException(404, f"Chat {chat_id} not found")
    return store.list_messages(chat_id)


@router.get("/search", response_model=list[SearchHitOut])
def search(
    q: str,
    scope: SearchScope = SearchScope.both,
    limit: int = Query(default=50, ge=1, le=500),
    store: ChatStore = Depends(get_store),
) -> list[SearchHit]:
    return store.search(q, scope, limit)
