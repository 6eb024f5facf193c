import logging
import secrets
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from kvchat.schemas import (
    AuthResponse,
    Credentials,
    SendMessageRequest,
    StartConversationRequest,
    StateResponse,
    StoreValue,
)
from kvchat.services.errors import (
    AlreadyExists,
    ChatError,
    InvalidCredentials,
    StorageUnavailable,
    ValidationError,
)
from kvchat.services.session import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS: dict[type[ChatError], int] = {
    ValidationError: 422,
    AlreadyExists: 409,
    InvalidCredentials: 401,
    StorageUnavailable: 503,
}


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """Render a core failure as ``{"error": message}`` with a matching status."""
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400
    )
    return JSONResponse(status_code=status, content={"error": exc.message})


def get_session(request: Request, token: str | None) -> ChatSession:
    """Look up the session addressed by the ``X-Session-Token`` header."""
    session = request.app.state.sessions.get(token) if token else None
    if session is None:
        raise HTTPException(status_code=401, detail="Not logged in")
    return session


async def _close_sessions_for(request: Request, username: str) -> None:
    """Log out every open session of ``username`` and forget its token."""
    sessions: dict[str, ChatSession] = request.app.state.sessions
    stale = [token for token, s in sessions.items() if s.current_user == username]
    for token in stale:
        await sessions.pop(token).logout()
    if stale:
        logger.info("Replaced %d session(s) for %s", len(stale), username)


async def _authenticate(request: Request, credentials: Credentials, signup: bool) -> AuthResponse:
    """Open a session; a user keeps at most one polling session."""
    session: ChatSession = request.app.state.new_session()
    if signup:
        await session.signup(credentials.username, credentials.password)
    else:
        await session.login(credentials.username, credentials.password)
    await _close_sessions_for(request, credentials.username)
    token = secrets.token_urlsafe(24)
    request.app.state.sessions[token] = session
    return AuthResponse(session_token=token, state=StateResponse.from_state(session.state))


@router.get("/healthz")
async def health(request: Request) -> dict[str, str]:
    """Report API readiness and the number of live sessions."""
    return {"status": "ok", "sessions": str(len(request.app.state.sessions))}


@router.post("/auth/signup")
async def signup(request: Request, credentials: Credentials) -> AuthResponse:
    """Register a new account and open a session for it."""
    return await _authenticate(request, credentials, signup=True)


@router.post("/auth/login")
async def login(request: Request, credentials: Credentials) -> AuthResponse:
    """Check credentials and open a session."""
    return await _authenticate(request, credentials, signup=False)


@router.post("/auth/logout")
async def logout(
    request: Request, x_session_token: str | None = Header(default=None)
) -> dict[str, str]:
    """Stop polling and forget the session."""
    session = get_session(request, x_session_token)
    await session.logout()
    request.app.state.sessions.pop(x_session_token, None)
    return {"status": "ok"}


@router.get("/state")
async def state(
    request: Request, x_session_token: str | None = Header(default=None)
) -> StateResponse:
    """Return the session's current view of its conversations."""
    session = get_session(request, x_session_token)
    return StateResponse.from_state(session.state)


@router.get("/users")
async def users(
    request: Request, x_session_token: str | None = Header(default=None)
) -> dict[str, list[str]]:
    """List every registered username."""
    session = get_session(request, x_session_token)
    return {"users": await session.refresh_users()}


@router.post("/conversations")
async def start_conversation(
    request: Request,
    body: StartConversationRequest,
    x_session_token: str | None = Header(default=None),
) -> StateResponse:
    """Open (or reuse) the conversation with ``peer`` and select it."""
    session = get_session(request, x_session_token)
    await session.start_conversation(body.peer)
    return StateResponse.from_state(session.state)


@router.post("/conversations/{conv_id}/select")
async def select_conversation(
    request: Request, conv_id: str, x_session_token: str | None = Header(default=None)
) -> StateResponse:
    """Point the session at one of its conversations."""
    session = get_session(request, x_session_token)
    session.select_conversation(conv_id)
    return StateResponse.from_state(session.state)


@router.post("/messages")
async def send_message(
    request: Request,
    body: SendMessageRequest,
    x_session_token: str | None = Header(default=None),
) -> dict[str, Any]:
    """Send ``text`` to the selected (or given) conversation."""
    session = get_session(request, x_session_token)
    if body.conversation_id:
        session.select_conversation(body.conversation_id)
    result = await session.send_message(body.text)
    return {
        "sent": result is not None,
        "delivered": bool(result and result.delivered),
        "state": StateResponse.from_state(session.state).model_dump(by_alias=True),
    }


@router.get("/kv/{key}")
async def read_key(request: Request, key: str, raw: bool = False) -> dict[str, Any]:
    """Serve the process store so other instances can use it remotely."""
    try:
        result = await request.app.state.store.get(key, raw)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Backing store read failed for %s: %s", key, exc)
        raise StorageUnavailable() from exc
    if result is None:
        raise HTTPException(status_code=404, detail="Not found")
    if isinstance(result, dict) and "value" in result:
        return {"key": key, "value": result["value"]}
    return {"key": key, "value": result}


@router.put("/kv/{key}")
async def write_key(request: Request, key: str, body: StoreValue) -> dict[str, str]:
    """Replace the value stored under ``key``."""
    try:
        await request.app.state.store.set(key, body.value, body.raw)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Backing store write failed for %s: %s", key, exc)
        raise StorageUnavailable() from exc
    return {"status": "ok"}
