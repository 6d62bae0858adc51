import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from shore.controller import Controller
from shore.input.keys import Key
from shore.routers.deps import get_controller
from shore.schemas.session import KeysIn, SessionStateOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session", tags=["session"])


@router.post("/keys", response_model=SessionStateOut)
async def send_keys(
    data: KeysIn, controller: Controller = Depends(get_controller)
) -> SessionStateOut:
    """Feed keystrokes through the input state machine and return the new state."""
    if controller.state.quit:
        raise HTTPException(409, "Session has ended")
    keys = [Key.parse(k) for k in data.keys]
    applied: list[str] = []
    for key in keys:
        applied.extend(type(c).__name__ for c in controller.handle_key(key))
        if controller.state.quit:
            break
    return SessionStateOut(state=controller.snapshot(), commands=applied)


@router.get("/state", response_model=SessionStateOut)
async def session_state(controller: Controller = Depends(get_controller)) -> SessionStateOut:
    return SessionStateOut(state=controller.snapshot())


@router.get("/events")
async def session_events(controller: Controller = Depends(get_controller)) -> EventSourceResponse:
    queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    unsubscribe = controller.subscribe(queue.put_nowait)

    async def event_stream() -> AsyncGenerator[dict[str, str], None]:
        try:
            yield {"event": "state", "data": json.dumps(controller.snapshot(), default=str)}
            while True:
                event = await queue.get()
                yield {"event": event["type"], "data": json.dumps(event["data"], default=str)}
                if event["type"] == "quit":
                    break
        finally:
            unsubscribe()
            logger.debug("Event stream closed")

    return EventSourceResponse(event_stream())
