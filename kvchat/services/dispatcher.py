"""Two-sided message delivery.

Every send is two independent whole-record writes: the sender's own record
(from the session cache) and the recipient's record (read fresh). Neither
write is versioned, so concurrent writers to the same record race and the
last writer wins.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from kvchat.services.conversations import ConversationStore
from kvchat.services.errors import ValidationError
from kvchat.services.models import Conversation, Message

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    """Outcome of :meth:`MessageDispatcher.send_message`."""

    conversations: list[Conversation]
    conversation: Conversation
    message: Message
    delivered: bool


def find_by_peer(conversations: list[Conversation], peer: str) -> Conversation | None:
    """Return the conversation with ``peer``; ids are never compared across users."""
    return next((c for c in conversations if c.peer == peer), None)


class MessageDispatcher:
    """Performs the dual write for each sent message."""

    def __init__(self, conversations: ConversationStore) -> None:
        """Write through ``conversations`` for both sides of every send."""
        self.conversations = conversations

    async def send_message(
        self,
        current_user: str | None,
        conversations: list[Conversation],
        selected: Conversation | None,
        text: str,
        on_saved: Callable[[list[Conversation], Conversation], None] | None = None,
    ) -> SendResult | None:
        """Append ``text`` to the selected conversation on both sides.

        ``on_saved`` receives the sender's updated list before either write
        starts. Returns ``None`` without touching storage if there is
        nothing to send.
        """
        if not text or not text.strip() or selected is None or not current_user:
            return None

        message = Message.compose(current_user, text)
        updated = self._append_to_own(conversations, selected, message)
        conversation = next(c for c in updated if c.id == selected.id)
        if on_saved is not None:
            on_saved(updated, conversation)
        await self.conversations.save_conversations(current_user, updated)

        delivered = await self.deliver(selected.peer, current_user, message)
        if not delivered:
            logger.warning(
                "Message %s from %s was not delivered to %s",
                message.id,
                current_user,
                selected.peer,
            )
        return SendResult(updated, conversation, message, delivered)

    @staticmethod
    def _append_to_own(
        conversations: list[Conversation], selected: Conversation, message: Message
    ) -> list[Conversation]:
        """Return the sender's list with ``message`` added to the selected entry."""
        if any(c.id == selected.id for c in conversations):
            return [
                c.with_message(message) if c.id == selected.id else c
                for c in conversations
            ]
        # The selected entry is missing from the cache; keep the message anyway.
        return [*conversations, selected.with_message(message)]

    async def deliver(self, recipient: str, sender: str, message: Message) -> bool:
        """Append ``message`` to the recipient's conversation with ``sender``.

        Creates that conversation if the recipient has never seen one.
        """
        recipient_convs = await self.conversations.load_conversations(recipient)
        existing = find_by_peer(recipient_convs, sender)
        if existing is None:
            recipient_convs.append(Conversation.start(recipient, sender).with_message(message))
        else:
            recipient_convs = [
                c.with_message(message) if c is existing else c for c in recipient_convs
            ]
        delivered = await self.conversations.save_conversations(recipient, recipient_convs)
        if delivered:
            logger.debug("Delivered message %s to %s", message.id, recipient)
        return delivered

    async def start_conversation(
        self, current_user: str | None, conversations: list[Conversation], peer: str
    ) -> tuple[list[Conversation], Conversation] | None:
        """Return the conversation with ``peer``, creating and saving it if needed.

        Only the initiator's record gains an entry; the peer's is created on
        first delivery.
        """
        peer = (peer or "").strip()
        if not peer or not current_user:
            return None
        if peer == current_user:
            raise ValidationError("You cannot start a conversation with yourself")

        existing = find_by_peer(conversations, peer)
        if existing is not None:
            return conversations, existing

        conversation = Conversation.start(current_user, peer)
        updated = [*conversations, conversation]
        await self.conversations.save_conversations(current_user, updated)
        return updated, conversation
