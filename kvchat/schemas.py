from typing import Any

from pydantic import BaseModel

from kvchat.services.models import Conversation
from kvchat.services.session import SessionState


class Credentials(BaseModel):
    username: str = ""
    password: str = ""


class StartConversationRequest(BaseModel):
    peer: str


class SendMessageRequest(BaseModel):
    text: str
    conversation_id: str | None = None


class StoreValue(BaseModel):
    value: Any
    raw: bool = False


class StateResponse(BaseModel):
    current_user: str | None
    conversations: list[Conversation]
    selected_conv: Conversation | None
    all_users: list[str]
    error: str

    @classmethod
    def from_state(cls, state: SessionState) -> "StateResponse":
        """Build the response body from a session snapshot."""
        return cls(
            current_user=state.current_user,
            conversations=state.conversations,
            selected_conv=state.selected_conv,
            all_users=state.all_users,
            error=state.error,
        )


class AuthResponse(BaseModel):
    session_token: str
    state: StateResponse
