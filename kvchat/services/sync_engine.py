import asyncio
import logging
from collections.abc import Callable

from kvchat.services.conversations import ConversationStore
from kvchat.services.models import Conversation

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0


class SyncEngine:
    """Re-reads the current user's record on a fixed cadence.

    Idle while no user is set; polling between :meth:`start` and :meth:`stop`.
    Each successful read replaces the session's cache in full via ``on_update``.
    A read and its cache replacement run under ``lock``; the owning session
    holds the same lock across its own writes, so a poll never lands a
    record older than the session's last write.
    """

    def __init__(
        self,
        conversations: ConversationStore,
        on_update: Callable[[list[Conversation]], None],
        interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        lock: asyncio.Lock | None = None,
    ) -> None:
        """Prepare an idle engine; nothing runs until :meth:`start`."""
        self.conversations = conversations
        self.on_update = on_update
        self.interval_seconds = interval_seconds
        self.lock = lock or asyncio.Lock()
        self._username: str | None = None
        self._task: asyncio.Task | None = None

    @property
    def username(self) -> str | None:
        """The user being polled, or ``None`` while idle."""
        return self._username

    @property
    def polling(self) -> bool:
        """True while the recurring poll task is alive."""
        return self._task is not None and not self._task.done()

    async def start(self, username: str) -> None:
        """Enter Polling for ``username``: load once now, then every interval."""
        await self.stop()
        self._username = username
        await self.poll_once()
        self._task = asyncio.create_task(self._run(username))

    async def stop(self) -> None:
        """Return to Idle and cancel the recurring poll."""
        self._username = None
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def poll_once(self) -> bool:
        """Read the record once. Returns False if the cache was left unchanged."""
        username = self._username
        if username is None:
            return False
        async with self.lock:
            conversations = await self.conversations.fetch_conversations(username)
            # Logged out or switched user while the read was in flight.
            if conversations is None or self._username != username:
                return False
            self.on_update(conversations)
        return True

    async def _run(self, username: str) -> None:
        """Poll every interval until the engine leaves Polling for ``username``."""
        while self._username == username:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.poll_once()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Poll for %s failed: %s", username, exc)
