import logging
from types import TracebackType
from typing import Any, Self

import httpx

from shore.errors import ProviderError

logger = logging.getLogger(__name__)


class ModelListClient:
    """Reads ``GET {base_url}/models`` from an OpenAI-compatible provider."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 30.0) -> None:
        self._base_url = base_url
        self._api_key = api_key
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._client:
            await self._client.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("ModelListClient not entered as context manager")
        return self._client

    async def _get(self, path: str) -> Any:
        try:
            resp = await self.client.get(path)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"GET {self._base_url}{path} failed: {exc}") from exc

    async def list_models(self) -> list[str]:
        payload = await self._get("/models")
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise ProviderError(f"Unexpected /models payload from {self._base_url}")
        names = [entry["id"] for entry in payload["data"] if isinstance(entry, dict) and entry.get("id")]
        logger.debug("Provider %s lists %d models", self._base_url, len(names))
        return names
