import asyncio
from typing import Any


class InMemoryStore:
    """Process-local key-value store guarded by an async lock."""

    def __init__(self) -> None:
        """Initialise the store and its async lock."""
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str, raw: bool = False) -> dict[str, Any] | None:
        """Return an envelope holding the stored value, or ``None`` if absent."""
        async with self._lock:
            if key not in self._data:
                return None
            return {"key": key, "value": self._data[key]}

    async def set(self, key: str, value: Any, raw: bool = False) -> None:
        """Store ``value`` under ``key``. Values are kept exactly as given."""
        async with self._lock:
            self._data[key] = value
