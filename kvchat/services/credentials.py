import asyncio
import json
import logging

from kvchat.services.errors import AlreadyExists, InvalidCredentials, ValidationError
from kvchat.services.storage_adapter import StorageAdapter, parse_or_default

logger = logging.getLogger(__name__)

DIRECTORY_KEY = "all_users"


def auth_key(username: str) -> str:
    """Key holding the password for ``username``."""
    return f"auth:{username}"


def _require(username: str, password: str) -> None:
    """Reject empty credentials before any storage access."""
    if not username or not password:
        raise ValidationError()


class CredentialStore:
    """Username/password records plus the directory of registered users.

    Passwords are stored as opaque raw values; any hardening is the
    store's responsibility.
    """

    def __init__(self, storage: StorageAdapter) -> None:
        """Keep credentials and the directory in ``storage``."""
        self.storage = storage
        # Serializes this process's signup check-then-write sequences.
        self._signup_lock = asyncio.Lock()

    async def signup(self, username: str, password: str) -> None:
        """Register ``username``. Raises ``AlreadyExists`` if taken."""
        _require(username, password)
        key = auth_key(username)
        async with self._signup_lock:
            if await self.storage.read_value(key, raw=True):
                raise AlreadyExists()

            await self.storage.write_value(key, password, raw=True)

            users = await self.list_users()
            if username not in users:
                users.append(username)
                await self.storage.write_value(DIRECTORY_KEY, json.dumps(users), raw=True)
        logger.info("Registered user %s", username)

    async def login(self, username: str, password: str) -> None:
        """Check the stored password. Raises ``InvalidCredentials`` on mismatch."""
        _require(username, password)
        stored = await self.storage.read_value(auth_key(username), raw=True)
        if not stored or stored != password:
            raise InvalidCredentials()

    async def list_users(self) -> list[str]:
        """Return every registered username (empty if the directory is unreadable)."""
        result = await self.storage.read_value(DIRECTORY_KEY, raw=True)
        users = parse_or_default(result, []) if result else []
        if not isinstance(users, list):
            logger.warning("Ignoring malformed user directory")
            return []
        return [str(user) for user in users]
