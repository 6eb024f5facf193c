"""Fault-tolerant wrapper around the external key-value store.

The store may hand back an envelope (``{"value": ...}``), a bare value, or
previously-deserialized data depending on the implementation and the ``raw``
flag. Everything above this module only ever sees a plain value or ``None``.
"""

import json
import logging
from typing import Any

from kvchat.services.store_protocol import KeyValueStore

logger = logging.getLogger(__name__)

ENVELOPE_FIELD = "value"


def parse_or_default(text: Any, fallback: Any = None) -> Any:
    """Deserialize ``text`` if it is serialized JSON, else return it unchanged.

    Returns ``fallback`` when the text cannot be decoded.
    """
    if not isinstance(text, (str, bytes, bytearray)):
        return text
    try:
        return json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return fallback


class StorageAdapter:
    """Normalizes store reads and turns store failures into ``None``/no-op."""

    def __init__(self, store: KeyValueStore) -> None:
        """Wrap ``store``; the adapter itself holds no state."""
        self.store = store

    async def read_value(self, key: str, raw: bool = False) -> Any:
        """Return the value stored under ``key``, or ``None``. Never raises."""
        try:
            result = await self.store.get(key, raw)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Store read failed for %s: %s", key, exc)
            return None
        if not result:
            return None
        if isinstance(result, dict) and ENVELOPE_FIELD in result:
            return result[ENVELOPE_FIELD]
        return result

    async def write_value(self, key: str, value: Any, raw: bool = False) -> bool:
        """Persist ``value`` under ``key``; returns False if the store failed."""
        try:
            await self.store.set(key, value, raw)
        except Exception as exc:  # noqa: BLE001
            logger.error("Store write failed for %s: %s", key, exc)
            return False
        return True
