from fastapi import APIRouter

from shore.routers.chats import router as chats_router
from shore.routers.session import router as session_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(session_router)
api_router.include_router(chats_router)
