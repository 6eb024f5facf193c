from typing import Any, Protocol


class KeyValueStore(Protocol):
    """Protocol describing the external async key-value store.

    Implementations may return either the bare value or an envelope
    ``{"key": ..., "value": ...}`` from :meth:`get`; callers go through
    :class:`~kvchat.services.storage_adapter.StorageAdapter` which normalizes both.
    """

    async def get(self, key: str, raw: bool = False) -> Any:
        """Retrieve the value stored under ``key`` (``None`` when absent)."""
        ...

    async def set(self, key: str, value: Any, raw: bool = False) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...
