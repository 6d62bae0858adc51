import httpx
import pytest
import respx

from shore.models.provider import Provider
from shore.providers.refresh import is_due, refresh_all
from shore.providers.registry import ProviderRegistry

OPENROUTER_MODELS = "https://openrouter.ai/api/v1/models"
OLLAMA_MODELS = "http://localhost:11434/v1/models"
NOW = 1_700_000_000


def listing(*names):
    return httpx.Response(200, json={"data": [{"id": n} for n in names]})


@pytest.fixture
def registry(store):
    reg = ProviderRegistry(store, environ={"OPENROUTER_API_KEY": "or-key"})
    reg.load()
    return reg


def by_name(registry, name):
    return next(p for p in registry.providers if p.name == name)


class TestIsDue:
    def test_interval(self):
        provider = Provider(name="p", base_url="x", last_models_update=100)
        provider.models_refresh_interval_seconds = 60
        assert not is_due(provider, 150)
        assert is_due(provider, 160)

    def test_zero_interval_always_due(self):
        provider = Provider(name="p", base_url="x", models_refresh_interval_seconds=0)
        assert is_due(provider, 0)


class TestRefreshAll:
    @respx.mock
    @pytest.mark.asyncio
    async def test_new_models_added(self, store, registry):
        respx.get(OPENROUTER_MODELS).mock(return_value=listing("a/one", "b/two"))
        respx.get(OLLAMA_MODELS).mock(return_value=listing("llama3"))

        events = await refresh_all(store, registry, now=NOW)

        openrouter = by_name(registry, "OpenRouter")
        ollama = by_name(registry, "Local Ollama")
        added = {e.provider_id: e.added for e in events}
        assert added == {openrouter.id: ["a/one", "b/two"], ollama.id: ["llama3"]}
        assert [m.model for m in store.models_for_provider(openrouter.id)] == ["a/one", "b/two"]
        assert registry.is_available(ollama.id)
        assert {registry.label(m.id) for m in registry.available_models()} >= {
            "OpenRouter/a/one",
            "Local Ollama/llama3",
        }

    @respx.mock
    @pytest.mark.asyncio
    async def test_providers_without_credentials_skipped(self, store, registry):
        respx.get(OPENROUTER_MODELS).mock(return_value=listing())
        respx.get(OLLAMA_MODELS).mock(return_value=listing())
        cerebras = respx.get("https://api.cerebras.ai/v1/models")

        await refresh_all(store, registry, now=NOW)
        assert not cerebras.called

    @respx.mock
    @pytest.mark.asyncio
    async def test_not_due_skipped_unless_forced(self, store, registry):
        openrouter_route = respx.get(OPENROUTER_MODELS).mock(return_value=listing("a/one"))
        respx.get(OLLAMA_MODELS).mock(return_value=listing())

        await refresh_all(store, registry, now=NOW)
        events = await refresh_all(store, registry, now=NOW + 10)
        assert openrouter_route.call_count == 1
        # providers gated on a /models response are always asked
        assert [e.provider_id for e in events] == [by_name(registry, "Local Ollama").id]

        await refresh_all(store, registry, now=NOW + 20, force=True)
        assert openrouter_route.call_count == 2

    @respx.mock
    @pytest.mark.asyncio
    async def test_vanished_models_deprecated(self, store, registry):
        route = respx.get(OPENROUTER_MODELS)
        route.side_effect = [listing("a/one", "b/two"), listing("b/two")]
        respx.get(OLLAMA_MODELS).mock(return_value=listing())
        openrouter = by_name(registry, "OpenRouter")

        await refresh_all(store, registry, now=NOW)
        one = next(m for m in store.models_for_provider(openrouter.id) if m.model == "a/one")
        events = await refresh_all(store, registry, now=NOW + 1, force=True)

        event = next(e for e in events if e.provider_id == openrouter.id)
        assert event.removed == [one.id]
        assert not registry.is_model_available(one.id)
        assert any(
            m.id == one.id and m.deprecated for m in store.list_models(include_deprecated=True)
        )

    @respx.mock
    @pytest.mark.asyncio
    async def test_failure_marks_provider_down(self, store, registry):
        respx.get(OPENROUTER_MODELS).mock(side_effect=httpx.ConnectError("connection refused"))
        respx.get(OLLAMA_MODELS).mock(return_value=httpx.Response(503))
        openrouter = by_name(registry, "OpenRouter")
        ollama = by_name(registry, "Local Ollama")

        events = await refresh_all(store, registry, now=NOW)

        assert all(e.error for e in events)
        assert not registry.is_available(openrouter.id)
        assert not registry.is_available(ollama.id)
        assert "503" in registry.down_reason(ollama.id)

    @respx.mock
    @pytest.mark.asyncio
    async def test_recovery_marks_provider_up(self, store, registry):
        respx.get(OPENROUTER_MODELS).mock(return_value=listing())
        route = respx.get(OLLAMA_MODELS)
        route.side_effect = [httpx.Response(503), listing("llama3")]
        ollama = by_name(registry, "Local Ollama")

        await refresh_all(store, registry, now=NOW)
        assert not registry.is_available(ollama.id)
        await refresh_all(store, registry, now=NOW + 1)
        assert registry.is_available(ollama.id)
        assert registry.down_reason(ollama.id) is None


class TestControllerRefresh:
    @respx.mock
    @pytest.mark.asyncio
    async def test_refresh_reported_as_events(self, controller):
        respx.get(OLLAMA_MODELS).mock(return_value=listing("llama3"))
        received = []
        controller.subscribe(received.append)

        await controller.refresh_models()
        assert controller.drain_events() == 1
        assert received[-1]["type"] == "models_refreshed"
        assert received[-1]["data"]["added"] == ["llama3"]

        rows = {r["name"]: r for r in controller.provider_status()}
        assert rows["Local Ollama"]["available"] is True
        assert rows["Anthropic"] == {
            "id": rows["Anthropic"]["id"],
            "name": "Anthropic",
            "available": False,
            "reason": "ANTHROPIC_API_KEY not set",
        }
