"""Provider availability, credential discovery and completion selection."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from shore.errors import ProviderError
from shore.models.provider import ApiShape, LLMModel, Provider
from shore.providers.base import ChatCompletion, ModelTarget
from shore.store import ChatStore

logger = logging.getLogger(__name__)


class CompletionRegistry:
    """Maps a model's API shape to the ``ChatCompletion`` that speaks it."""

    def __init__(self) -> None:
        self._impls: dict[ApiShape, ChatCompletion] = {}

    def register(self, shape: ApiShape, impl: ChatCompletion) -> None:
        self._impls[shape] = impl

    def for_shape(self, shape: ApiShape) -> ChatCompletion:
        try:
            return self._impls[shape]
        except KeyError:
            raise ProviderError(f"No completion implementation for API shape {shape}") from None


class ProviderRegistry:
    """In-memory view of providers and models with their runtime availability.

    Credentials are read once from the environment when ``load`` runs. A
    provider can additionally be marked down at runtime (failed model list
    fetch); it then contributes no models until it is marked up again.
    """

    def __init__(self, store: ChatStore, environ: Mapping[str, str] | None = None) -> None:
        self.store = store
        self._environ = environ if environ is not None else os.environ
        self._providers: dict[int, Provider] = {}
        self._models: dict[int, LLMModel] = {}
        self._credentials: dict[int, str | None] = {}
        self._down: dict[int, str] = {}
        self._responded: set[int] = set()

    def load(self) -> None:
        self._providers = {p.id: p for p in self.store.list_providers()}  # type: ignore[misc]
        self._models = {m.id: m for m in self.store.list_models()}  # type: ignore[misc]
        self._credentials = {pid: self._discover(p) for pid, p in self._providers.items()}
        missing = [p.name for pid, p in self._providers.items() if self._credentials[pid] is None]
        if missing:
            logger.info("No credentials for providers: %s", ", ".join(missing))
        logger.info(
            "Loaded %d providers and %d models", len(self._providers), len(self._models)
        )

    def reload_models(self) -> None:
        self._models = {m.id: m for m in self.store.list_models()}  # type: ignore[misc]

    def _discover(self, provider: Provider) -> str | None:
        if not provider.api_key_env_var:
            return ""
        return self._environ.get(provider.api_key_env_var) or None

    # ------------------------------------------------------------------

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers.values())

    def provider(self, provider_id: int) -> Provider | None:
        return self._providers.get(provider_id)

    def model(self, model_id: int) -> LLMModel | None:
        return self._models.get(model_id)

    def credential(self, provider_id: int) -> str | None:
        return self._credentials.get(provider_id)

    def has_credential(self, provider_id: int) -> bool:
        return self._credentials.get(provider_id) is not None

    def mark_down(self, provider_id: int, reason: str) -> None:
        provider = self._providers.get(provider_id)
        logger.warning(
            "Provider %s marked down: %s", provider.name if provider else provider_id, reason
        )
        self._down[provider_id] = reason
        self._responded.discard(provider_id)

    def mark_up(self, provider_id: int) -> None:
        self._down.pop(provider_id, None)
        self._responded.add(provider_id)

    def down_reason(self, provider_id: int) -> str | None:
        return self._down.get(provider_id)

    def is_available(self, provider_id: int) -> bool:
        provider = self._providers.get(provider_id)
        if provider is None or provider.disabled or provider.deprecated:
            return False
        if not self.has_credential(provider_id) or provider_id in self._down:
            return False
        if provider.availability_requires_models_response:
            return provider_id in self._responded
        return True

    def is_model_available(self, model_id: int) -> bool:
        model = self._models.get(model_id)
        if model is None or model.disabled or model.deprecated:
            return False
        return self.is_available(model.provider_id)

    def is_model_configured(self, model_id: int) -> bool:
        """Usable apart from runtime reachability (down marks, pending /models)."""
        model = self._models.get(model_id)
        if model is None or model.disabled or model.deprecated:
            return False
        provider = self._providers.get(model.provider_id)
        if provider is None or provider.disabled or provider.deprecated:
            return False
        return self.has_credential(model.provider_id)

    def configured_models(self) -> list[LLMModel]:
        return [m for m in self._models.values() if self.is_model_configured(m.id)]  # type: ignore[arg-type]

    def available_models(self) -> list[LLMModel]:
        return [m for m in self._models.values() if self.is_model_available(m.id)]  # type: ignore[arg-type]

    def first_viable_model(self) -> int | None:
        for provider_id in sorted(self._providers):
            if not self.is_available(provider_id):
                continue
            candidates = sorted(
                (m for m in self._models.values() if m.provider_id == provider_id),
                key=lambda m: m.id,  # type: ignore[arg-type,return-value]
            )
            for model in candidates:
                if self.is_model_available(model.id):  # type: ignore[arg-type]
                    return model.id
        return None

    def unavailable(self, model_ids: list[int]) -> list[tuple[str, str]]:
        """(model, provider) name pairs for every model that cannot be dispatched."""
        result: list[tuple[str, str]] = []
        for model_id in model_ids:
            if self.is_model_available(model_id):
                continue
            model = self._models.get(model_id)
            provider = self._providers.get(model.provider_id) if model else None
            result.append(
                (
                    model.model if model else f"#{model_id}",
                    provider.name if provider else "unknown provider",
                )
            )
        return result

    def label(self, model_id: int) -> str:
        model = self._models.get(model_id)
        if model is None:
            return f"#{model_id}"
        provider = self._providers.get(model.provider_id)
        return f"{provider.name}/{model.model}" if provider else model.model

    def target(self, model_id: int) -> ModelTarget:
        model = self._models.get(model_id)
        if model is None:
            raise ProviderError(f"Model {model_id} is not known")
        provider = self._providers[model.provider_id]
        return ModelTarget(
            model_id=model_id,
            model=model.model,
            provider_id=provider.id,  # type: ignore[arg-type]
            provider_name=provider.name,
            base_url=provider.base_url,
            api_key=self._credentials.get(provider.id) or "",  # type: ignore[arg-type]
            api_shape=model.api_shape,
        )
