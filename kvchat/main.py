import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from kvchat.routers import chat_error_handler, router
from kvchat.services.conversations import ConversationStore
from kvchat.services.credentials import CredentialStore
from kvchat.services.dispatcher import MessageDispatcher
from kvchat.services.errors import ChatError
from kvchat.services.http_store import HttpKeyValueStore
from kvchat.services.in_memory_store import InMemoryStore
from kvchat.services.session import ChatSession
from kvchat.services.storage_adapter import StorageAdapter
from kvchat.services.store_protocol import KeyValueStore
from kvchat.settings import Settings, settings

logger = logging.getLogger(__name__)


def build_store(config: Settings) -> KeyValueStore:
    """Use the remote store when ``STORE_URL`` is configured, else keep data in-process."""
    if config.STORE_URL:
        return HttpKeyValueStore(
            base_url=config.STORE_URL,
            api_key=config.STORE_API_KEY,
            timeout=config.STORE_TIMEOUT,
        )
    return InMemoryStore()


def create_app(
    config: Settings = settings, store: KeyValueStore | None = None
) -> FastAPI:
    """Wire the shared stores into a FastAPI app with per-client sessions."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Share one set of stores across sessions; log everyone out on shutdown."""
        app.state.store = store or build_store(config)
        storage = StorageAdapter(app.state.store)
        credentials = CredentialStore(storage)
        conversations = ConversationStore(storage)
        dispatcher = MessageDispatcher(conversations)
        app.state.sessions = {}

        def new_session() -> ChatSession:
            return ChatSession(
                credentials,
                conversations,
                dispatcher,
                poll_interval_seconds=config.POLL_INTERVAL_SECONDS,
            )

        app.state.new_session = new_session
        try:
            yield
        finally:
            for session in list(app.state.sessions.values()):
                await session.logout()
            app.state.sessions.clear()
            if isinstance(app.state.store, HttpKeyValueStore):
                await app.state.store.close()

    app = FastAPI(lifespan=lifespan)
    app.include_router(router)
    app.add_exception_handler(ChatError, chat_error_handler)
    return app


logging.basicConfig(level=settings.LOG_LEVEL)
app = create_app()
