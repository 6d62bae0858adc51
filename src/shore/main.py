import asyncio
import logging
import sys
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from sqlalchemy import Engine

from shore.config import settings
from shore.controller import Controller
from shore.database import create_db_and_tables
from shore.dispatch.engine import DispatchEngine
from shore.models.provider import ApiShape
from shore.providers.openai_compat import OpenAIChatCompletion
from shore.providers.registry import CompletionRegistry, ProviderRegistry
from shore.routers import api_router
from shore.store import ChatStore
from shore.tools.executor import ToolExecutor


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    for name in ("httpx", "httpcore", "openai", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)


_configure_logging()
logger = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task[None]] = set()


def build_controller(engine: Engine) -> Controller:
    """Wire store, provider registries, dispatch engine and controller together."""
    store = ChatStore(engine)
    providers = ProviderRegistry(store)
    completions = CompletionRegistry()
    completions.register(
        ApiShape.openai_chat,
        OpenAIChatCompletion(remove_think_tokens=settings.remove_think_tokens),
    )
    dispatcher = DispatchEngine(store, providers, completions, ToolExecutor(), settings)
    return Controller(store, dispatcher, providers, settings)


def _spawn(coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    from shore.database import engine

    create_db_and_tables(engine)
    controller = build_controller(engine)
    controller.start()
    app.state.controller = controller
    app.state.store = controller.store
    _spawn(controller.run())
    if settings.refresh_models_on_start:
        _spawn(controller.refresh_models())
    logger.info("Application started (database %s)", settings.db_path)
    yield
    logger.info("Shutting down...")
    for task in list(_background_tasks):
        task.cancel()
    await asyncio.gather(*_background_tasks, return_exceptions=True)
    try:
        await controller.dispatcher.shutdown()
    except Exception:
        logger.exception("Failed to stop dispatch lanes")
    try:
        engine.dispose()
        logger.info("Database engine disposed")
    except Exception:
        logger.exception("Failed to dispose database engine")
    logger.info("Shutdown complete")


app = FastAPI(
    title="shore",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(api_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
