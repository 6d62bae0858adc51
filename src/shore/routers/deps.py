"""Shared FastAPI dependencies used across routers."""

from fastapi import HTTPException, Request

from shore.controller import Controller
from shore.store import ChatStore


def get_controller(request: Request) -> Controller:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(503, "Session not started")
    return controller


def get_store(request: Request) -> ChatStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(503, "Store not available")
    return store
