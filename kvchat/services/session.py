import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from kvchat.services.conversations import ConversationStore
from kvchat.services.credentials import CredentialStore
from kvchat.services.dispatcher import MessageDispatcher, SendResult
from kvchat.services.errors import ChatError, ValidationError
from kvchat.services.models import Conversation
from kvchat.services.sync_engine import DEFAULT_POLL_INTERVAL_SECONDS, SyncEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionState:
    """Snapshot of one client's session handed to subscribers."""

    current_user: str | None = None
    conversations: list[Conversation] = field(default_factory=list)
    selected_conv: Conversation | None = None
    all_users: list[str] = field(default_factory=list)
    error: str = ""


Listener = Callable[[SessionState], None]


class ChatSession:
    """One client's in-memory state and the operations the UI calls into.

    Nothing here survives a restart; the stores are the source of truth.
    Writes to the user's own record and poll results are serialized through
    one lock, so the session acts as a single thread of control.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        conversations: ConversationStore,
        dispatcher: MessageDispatcher,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        """Create an idle session sharing the given stores."""
        self.credentials = credentials
        self.dispatcher = dispatcher
        self._lock = asyncio.Lock()
        self.sync = SyncEngine(
            conversations, self._on_poll, poll_interval_seconds, lock=self._lock
        )
        self.current_user: str | None = None
        self.conversations: list[Conversation] = []
        self.selected_id: str | None = None
        self.all_users: list[str] = []
        self.error = ""
        self._listeners: list[Listener] = []

    @property
    def selected_conv(self) -> Conversation | None:
        """The cached conversation whose id is selected, if it still exists."""
        if self.selected_id is None:
            return None
        return next((c for c in self.conversations if c.id == self.selected_id), None)

    @property
    def state(self) -> SessionState:
        """A copy of the current state for rendering."""
        return SessionState(
            current_user=self.current_user,
            conversations=list(self.conversations),
            selected_conv=self.selected_conv,
            all_users=list(self.all_users),
            error=self.error,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for state changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            """Stop delivering state changes to ``listener``."""
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        """Hand the current state to every subscriber; their failures are logged."""
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:  # noqa: BLE001
                logger.exception("Session listener failed")

    def _fail(self, exc: ChatError) -> None:
        """Expose ``exc`` through the ``error`` field."""
        self.error = exc.message
        self._notify()

    def _on_poll(self, conversations: list[Conversation]) -> None:
        """Replace the cache with a freshly polled record."""
        self.conversations = conversations
        self._notify()

    async def signup(self, username: str, password: str) -> None:
        """Register a new account and start polling for it."""
        self.error = ""
        try:
            await self.credentials.signup(username, password)
        except ChatError as exc:
            self._fail(exc)
            raise
        await self._enter(username)

    async def login(self, username: str, password: str) -> None:
        """Check credentials and start polling for ``username``."""
        self.error = ""
        try:
            await self.credentials.login(username, password)
        except ChatError as exc:
            self._fail(exc)
            raise
        await self._enter(username)

    async def _enter(self, username: str) -> None:
        """Switch to ``username`` with an empty cache, then load and poll."""
        self.current_user = username
        self.conversations = []
        self.selected_id = None
        self.all_users = await self.credentials.list_users()
        await self.sync.start(username)
        logger.info("Session started for %s", username)
        self._notify()

    async def logout(self) -> None:
        """Stop polling and drop everything cached for the user."""
        await self.sync.stop()
        if self.current_user:
            logger.info("Session ended for %s", self.current_user)
        self.current_user = None
        self.conversations = []
        self.selected_id = None
        self._notify()

    async def refresh_users(self) -> list[str]:
        """Re-read the user directory."""
        self.all_users = await self.credentials.list_users()
        self._notify()
        return self.all_users

    def select_conversation(self, conv_id: str) -> Conversation:
        """Select the cached conversation ``conv_id``."""
        conversation = next((c for c in self.conversations if c.id == conv_id), None)
        if conversation is None:
            error = ValidationError("Unknown conversation")
            self._fail(error)
            raise error
        self.selected_id = conv_id
        self._notify()
        return conversation

    async def start_conversation(self, peer: str) -> Conversation | None:
        """Open (or reuse) the conversation with ``peer`` and select it."""
        self.error = ""
        async with self._lock:
            try:
                started = await self.dispatcher.start_conversation(
                    self.current_user, self.conversations, peer
                )
            except ChatError as exc:
                self._fail(exc)
                raise
            if started is None:
                return None
            self.conversations, conversation = started
        self.selected_id = conversation.id
        self._notify()
        return conversation

    def _on_sent(
        self, conversations: list[Conversation], conversation: Conversation
    ) -> None:
        """Show a send immediately, before it is persisted."""
        self.conversations = conversations
        self.selected_id = conversation.id
        self._notify()

    async def send_message(self, text: str) -> SendResult | None:
        """Send ``text`` to the selected conversation."""
        async with self._lock:
            return await self.dispatcher.send_message(
                self.current_user,
                self.conversations,
                self.selected_conv,
                text,
                on_saved=self._on_sent,
            )
