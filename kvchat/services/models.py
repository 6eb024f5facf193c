import secrets
import string
import time
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _now_ms() -> int:
    """Return the current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def _iso_now() -> str:
    """Return the current UTC time as an ISO-8601 string ending in ``Z``."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def new_message_id() -> str:
    """Timestamp plus a short random suffix; collision-resistant, not unique."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{_now_ms()}-{suffix}"


def new_conversation_id(owner: str, peer: str) -> str:
    """Build the owner-side id for a new conversation with ``peer``."""
    return f"{owner}_{peer}_{_now_ms()}"


class Message(BaseModel):
    """A single immutable chat message."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    sender: str = Field(alias="from")
    text: str
    timestamp: str

    @classmethod
    def compose(cls, sender: str, text: str) -> "Message":
        """Create a new message from ``sender`` stamped with a fresh id and time."""
        return cls(id=new_message_id(), sender=sender, text=text, timestamp=_iso_now())


class Conversation(BaseModel):
    """The owning user's thread with one peer."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    peer: str = Field(alias="with")
    messages: list[Message] = Field(default_factory=list)

    @classmethod
    def start(cls, owner: str, peer: str) -> "Conversation":
        """Create an empty conversation owned by ``owner`` with ``peer``."""
        return cls(id=new_conversation_id(owner, peer), peer=peer)

    def with_message(self, message: Message) -> "Conversation":
        """Return a copy of this conversation with ``message`` appended."""
        return self.model_copy(update={"messages": [*self.messages, message]})

    @property
    def last_message(self) -> Message | None:
        """The most recent message, or ``None`` for an empty thread."""
        return self.messages[-1] if self.messages else None


class UserRecord(BaseModel):
    """Everything persisted under ``user:<username>``."""

    conversations: list[Conversation] = Field(default_factory=list)
