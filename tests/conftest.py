"""Shared fixtures and instrumented stores for the test suite."""

import asyncio
from typing import Any

import pytest

from kvchat.services.conversations import ConversationStore
from kvchat.services.credentials import CredentialStore
from kvchat.services.dispatcher import MessageDispatcher
from kvchat.services.in_memory_store import InMemoryStore
from kvchat.services.session import ChatSession
from kvchat.services.storage_adapter import StorageAdapter


class FlakyStore(InMemoryStore):
    """In-memory store that raises for selected keys while failing is on."""

    def __init__(self) -> None:
        """Start with no failing keys."""
        super().__init__()
        self.fail_reads: set[str] = set()
        self.fail_writes: set[str] = set()

    async def get(self, key: str, raw: bool = False) -> Any:
        """Refuse reads of keys in ``fail_reads``."""
        if key in self.fail_reads:
            raise ConnectionError(f"read {key} refused")
        return await super().get(key, raw)

    async def set(self, key: str, value: Any, raw: bool = False) -> None:
        """Refuse writes of keys in ``fail_writes``."""
        if key in self.fail_writes:
            raise ConnectionError(f"write {key} refused")
        await super().set(key, value, raw)

    async def keys(self) -> list[str]:
        """List every stored key."""
        async with self._lock:
            return sorted(self._data)


class GatedStore(InMemoryStore):
    """Holds readers of ``gate_key`` until ``parties`` of them have read it.

    Forces concurrent read-modify-write sequences to work from the same
    snapshot, which reproduces last-writer-wins loss deterministically.
    """

    def __init__(self, gate_key: str, parties: int = 2) -> None:
        """Gate the first ``parties`` reads of ``gate_key``."""
        super().__init__()
        self.gate_key = gate_key
        self.parties = parties
        self._arrived = 0
        self._open = asyncio.Event()

    async def get(self, key: str, raw: bool = False) -> Any:
        """Read, then wait at the gate if it is still closed."""
        result = await super().get(key, raw)
        if key == self.gate_key and not self._open.is_set():
            self._arrived += 1
            if self._arrived >= self.parties:
                self._open.set()
            await self._open.wait()
        return result


class HoldingStore(InMemoryStore):
    """Keeps one read of ``hold_key`` in flight until :meth:`release`.

    The value is captured before the hold, so the held reader returns
    whatever was stored when it started.
    """

    def __init__(self, hold_key: str) -> None:
        """Hold nothing until :meth:`arm` is called."""
        super().__init__()
        self.hold_key = hold_key
        self.armed = False
        self.holding = asyncio.Event()
        self._released = asyncio.Event()

    def arm(self) -> None:
        """Hold the next read of ``hold_key``."""
        self.armed = True

    def release(self) -> None:
        """Let the held read return."""
        self._released.set()

    async def get(self, key: str, raw: bool = False) -> Any:
        """Read, then hold the caller if armed for this key."""
        result = await super().get(key, raw)
        if key == self.hold_key and self.armed:
            self.armed = False
            self.holding.set()
            await self._released.wait()
        return result


@pytest.fixture
def store() -> FlakyStore:
    """A fresh in-memory store that can be told to fail."""
    return FlakyStore()


@pytest.fixture
def storage(store: FlakyStore) -> StorageAdapter:
    """The adapter over the shared store."""
    return StorageAdapter(store)


@pytest.fixture
def credentials(storage: StorageAdapter) -> CredentialStore:
    return CredentialStore(storage)


@pytest.fixture
def conversations(storage: StorageAdapter) -> ConversationStore:
    return ConversationStore(storage)


@pytest.fixture
def dispatcher(conversations: ConversationStore) -> MessageDispatcher:
    return MessageDispatcher(conversations)


@pytest.fixture
def make_session(credentials, conversations, dispatcher):
    """Build sessions sharing one store; polling is effectively off unless asked."""

    def factory(poll_interval_seconds: float = 3600.0) -> ChatSession:
        return ChatSession(
            credentials,
            conversations,
            dispatcher,
            poll_interval_seconds=poll_interval_seconds,
        )

    return factory
