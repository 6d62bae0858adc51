"""Refreshes model lists of providers that publish them through ``/models``."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from shore.dispatch.events import ModelsRefreshed
from shore.errors import PersistenceError, ProviderError
from shore.models.provider import Provider
from shore.providers.models_client import ModelListClient
from shore.providers.registry import ProviderRegistry
from shore.store import ChatStore

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], ModelListClient]


def _needs_listing(provider: Provider) -> bool:
    return provider.models_from_list or provider.availability_requires_models_response


def is_due(provider: Provider, now: int) -> bool:
    if provider.models_refresh_interval_seconds <= 0:
        return True
    return now - provider.last_models_update >= provider.models_refresh_interval_seconds


async def refresh_provider(
    store: ChatStore,
    registry: ProviderRegistry,
    provider: Provider,
    now: int,
    client_factory: ClientFactory = ModelListClient,
) -> ModelsRefreshed:
    """Fetch one provider's model list and reconcile it with the store.

    Models that disappeared are deprecated, never deleted. A failed fetch
    marks the provider down so its models leave the selection.
    """
    provider_id: int = provider.id  # type: ignore[assignment]
    try:
        async with client_factory(provider.base_url, registry.credential(provider_id) or "") as client:
            names = await client.list_models()
    except ProviderError as exc:
        registry.mark_down(provider_id, str(exc))
        return ModelsRefreshed(provider_id=provider_id, error=str(exc))

    registry.mark_up(provider_id)
    if not provider.models_from_list:
        return ModelsRefreshed(provider_id=provider_id)

    existing = {m.model: m.id for m in store.models_for_provider(provider_id)}
    listed = set(names)
    new_names = [n for n in names if n not in existing]
    removed_ids = [mid for name, mid in existing.items() if name not in listed]
    try:
        store.sync_provider_models(provider_id, new_names, removed_ids, now)  # type: ignore[arg-type]
    except PersistenceError as exc:
        return ModelsRefreshed(provider_id=provider_id, error=str(exc))
    provider.last_models_update = now
    if new_names or removed_ids:
        logger.info(
            "Provider %s: %d new models, %d removed",
            provider.name,
            len(new_names),
            len(removed_ids),
        )
    return ModelsRefreshed(provider_id=provider_id, added=new_names, removed=removed_ids)  # type: ignore[arg-type]


async def refresh_all(
    store: ChatStore,
    registry: ProviderRegistry,
    *,
    force: bool = False,
    now: int | None = None,
    client_factory: ClientFactory = ModelListClient,
) -> list[ModelsRefreshed]:
    now = int(time.time()) if now is None else now
    results: list[ModelsRefreshed] = []
    for provider in registry.providers:
        if provider.disabled or not _needs_listing(provider):
            continue
        if not registry.has_credential(provider.id):  # type: ignore[arg-type]
            continue
        if not force and not provider.availability_requires_models_response and not is_due(
            provider, now
        ):
            continue
        results.append(await refresh_provider(store, registry, provider, now, client_factory))
    registry.reload_models()
    return results
