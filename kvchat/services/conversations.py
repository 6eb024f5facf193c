import logging

import pydantic

from kvchat.services.models import Conversation, UserRecord
from kvchat.services.storage_adapter import StorageAdapter, parse_or_default

logger = logging.getLogger(__name__)


def user_key(username: str) -> str:
    """Key holding the conversation record for ``username``."""
    return f"user:{username}"


class ConversationStore:
    """Reads and writes each user's whole conversation record."""

    def __init__(self, storage: StorageAdapter) -> None:
        """Keep conversation records in ``storage``."""
        self.storage = storage

    async def fetch_conversations(self, username: str) -> list[Conversation] | None:
        """Return the stored conversations, or ``None`` if the record is unreadable.

        A missing record and a store failure look the same here; the sync
        engine uses ``None`` to keep its cached copy.
        """
        result = await self.storage.read_value(user_key(username))
        if not result:
            return None
        data = parse_or_default(result, {"conversations": []})
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed record for %s", username)
            return None
        try:
            record = UserRecord.model_validate(data)
        except pydantic.ValidationError as exc:
            logger.warning("Ignoring invalid record for %s: %s", username, exc)
            return None
        return record.conversations

    async def load_conversations(self, username: str) -> list[Conversation]:
        """Return the stored conversations; absence means an empty history."""
        return await self.fetch_conversations(username) or []

    async def save_conversations(
        self, username: str, conversations: list[Conversation]
    ) -> bool:
        """Overwrite the whole record for ``username``."""
        record = UserRecord(conversations=conversations)
        return await self.storage.write_value(
            user_key(username), record.model_dump_json(by_alias=True)
        )
