import asyncio
import os
import tempfile

os.environ.setdefault("SHORE_DATA_DIR", tempfile.mkdtemp(prefix="shore-tests-"))
os.environ.setdefault("SHORE_REFRESH_MODELS_ON_START", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from shore.config import Settings  # noqa: E402
from shore.controller import Controller  # noqa: E402
from shore.database import create_db_and_tables, make_engine  # noqa: E402
from shore.dispatch.engine import DispatchEngine  # noqa: E402
from shore.models.provider import ApiShape, LLMModel  # noqa: E402
from shore.providers.base import Completion, CompletionRequest, Fragment  # noqa: E402
from shore.providers.registry import CompletionRegistry, ProviderRegistry  # noqa: E402
from shore.store import ChatStore  # noqa: E402
from shore.tools.executor import ToolExecutor  # noqa: E402

TEST_ENV = {"OPENAI_API_KEY": "sk-test", "GROQ_API_KEY": "gsk-test"}
TITLE_PROMPT = "Name this conversation."


class FakeCompletion:
    """Scripted stand-in for a provider.

    Replies are queued per model name; a model without queued replies answers
    ``"<model> says hi"``. A gate per model name holds the request open until
    the test releases it.
    """

    def __init__(self, title: str = "Generated Title") -> None:
        self.title = title
        self.replies: dict[str, list[Completion | Exception]] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[CompletionRequest] = []

    def script(self, model: str, *replies: Completion | Exception) -> None:
        self.replies.setdefault(model, []).extend(replies)

    def gate(self, model: str) -> asyncio.Event:
        return self.gates.setdefault(model, asyncio.Event())

    def calls_for(self, model: str) -> list[CompletionRequest]:
        return [c for c in self.calls if c.target.model == model]

    async def complete(self, request: CompletionRequest, on_fragment=None) -> Completion:
        self.calls.append(request)
        model = request.target.model
        gate = self.gates.get(model)
        if gate is not None:
            await gate.wait()
        if request.messages and request.messages[-1].content == TITLE_PROMPT:
            return Completion(content=self.title)
        queued = self.replies.get(model)
        reply = queued.pop(0) if queued else Completion(content=f"{model} says hi")
        if isinstance(reply, Exception):
            raise reply
        if on_fragment is not None and reply.content:
            on_fragment(Fragment(content=reply.content))
        return reply


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return ChatStore(engine)


@pytest.fixture
def providers(store):
    registry = ProviderRegistry(store, environ=TEST_ENV)
    registry.load()
    return registry


@pytest.fixture
def models(store) -> dict[str, LLMModel]:
    """Seeded models by name."""
    return {m.model: m for m in store.list_models()}


@pytest.fixture
def fake_completion():
    return FakeCompletion()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        data_dir=tmp_path,
        max_tool_iterations=2,
        title_prompt=TITLE_PROMPT,
        system_prompt="You are terse.",
    )


@pytest.fixture
def dispatcher(store, providers, fake_completion, test_settings):
    completions = CompletionRegistry()
    completions.register(ApiShape.openai_chat, fake_completion)
    return DispatchEngine(store, providers, completions, ToolExecutor(), test_settings)


@pytest.fixture
def controller(store, dispatcher, providers, test_settings):
    ctl = Controller(store, dispatcher, providers, test_settings)
    ctl.start()
    return ctl


@pytest.fixture
def client(engine, monkeypatch):
    monkeypatch.setattr("shore.database.engine", engine)
    from shore.main import app

    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
