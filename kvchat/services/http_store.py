from typing import Any
from urllib.parse import quote

import httpx


class HttpKeyValueStore:
    """Async client for a key-value store exposed over HTTP at ``/kv/{key}``."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client and create an underlying HTTPX session."""
        self.base_url = base_url
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=timeout,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        """Create HTTP headers for store requests."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _path(key: str) -> str:
        """URL path for ``key``, escaped so ``:`` survives."""
        return f"/kv/{quote(key, safe='')}"

    async def close(self) -> None:
        """Close the underlying HTTPX client."""
        await self._client.aclose()

    async def get(self, key: str, raw: bool = False) -> dict[str, Any] | None:
        """Fetch the envelope stored under ``key``; ``None`` on 404."""
        response = await self._client.get(
            self._path(key), params={"raw": str(raw).lower()}
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        response.raise_for_status()
        return response.json()

    async def set(self, key: str, value: Any, raw: bool = False) -> None:
        """Replace the value stored under ``key``."""
        response = await self._client.put(
            self._path(key), json={"value": value, "raw": raw}
        )
        response.raise_for_status()
