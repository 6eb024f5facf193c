"""
Tests for the HTTP API.

Run with: pytest tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from kvchat.main import create_app
from kvchat.services.in_memory_store import InMemoryStore
from kvchat.settings import Settings


@pytest.fixture
def client():
    """A test client over a fresh in-memory store."""
    app = create_app(Settings(POLL_INTERVAL_SECONDS=3600), store=InMemoryStore())
    with TestClient(app) as test_client:
        yield test_client


def signup(client: TestClient, username: str, password: str = "pw") -> dict[str, str]:
    """Sign up and return the session header."""
    response = client.post("/auth/signup", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"X-Session-Token": response.json()["session_token"]}


class TestAuthRoutes:
    """Test session routes."""

    def test_healthz(self, client):
        """Health reports no sessions at startup."""
        assert client.get("/healthz").json() == {"status": "ok", "sessions": "0"}

    def test_signup_and_login(self, client):
        """Signup then login returns the state of the user."""
        signup(client, "alice", "pw1")
        response = client.post("/auth/login", json={"username": "alice", "password": "pw1"})

        assert response.status_code == 200
        assert response.json()["state"]["current_user"] == "alice"
        assert response.json()["state"]["all_users"] == ["alice"]

    def test_error_statuses(self, client):
        """Core failures map to HTTP statuses."""
        signup(client, "alice")

        duplicate = client.post("/auth/signup", json={"username": "alice", "password": "x"})
        wrong = client.post("/auth/login", json={"username": "alice", "password": "x"})
        empty = client.post("/auth/login", json={"username": "", "password": ""})

        assert duplicate.status_code == 409
        assert wrong.status_code == 401
        assert wrong.json() == {"error": "Invalid credentials"}
        assert empty.status_code == 422

    def test_logout_forgets_session(self, client):
        """A logged-out token is rejected."""
        headers = signup(client, "alice")
        assert client.post("/auth/logout", headers=headers).status_code == 200
        assert client.get("/state", headers=headers).status_code == 401

    def test_login_replaces_earlier_session(self, client):
        """Logging in again closes the earlier session of the same user."""
        bob = signup(client, "bob")
        first = signup(client, "alice")
        replaced = client.app.state.sessions[first["X-Session-Token"]]
        tokens = [
            client.post("/auth/login", json={"username": "alice", "password": "pw"}).json()[
                "session_token"
            ]
            for _ in range(3)
        ]

        assert client.get("/healthz").json()["sessions"] == "2"
        assert not replaced.sync.polling
        for token in [first["X-Session-Token"], *tokens[:-1]]:
            assert client.get("/state", headers={"X-Session-Token": token}).status_code == 401
        latest = client.get("/state", headers={"X-Session-Token": tokens[-1]})
        assert latest.json()["current_user"] == "alice"
        assert client.get("/state", headers=bob).status_code == 200

    def test_state_requires_session(self, client):
        """State needs a session token."""
        assert client.get("/state").status_code == 401


class TestChatRoutes:
    """Test conversation and message routes."""

    def test_message_reaches_peer_record(self, client):
        """A sent message is written into the record of the peer."""
        alice = signup(client, "alice")
        bob = signup(client, "bob")

        started = client.post("/conversations", json={"peer": "bob"}, headers=alice).json()
        assert started["selected_conv"]["with"] == "bob"
        assert started["selected_conv"]["messages"] == []

        sent = client.post("/messages", json={"text": "hi"}, headers=alice).json()
        assert sent["sent"] and sent["delivered"]
        message = sent["state"]["selected_conv"]["messages"][0]
        assert message["from"] == "alice"
        assert message["text"] == "hi"

        record = client.get("/kv/user:bob").json()["value"]
        assert '"with":"alice"' in record
        assert message["id"] in record

        assert client.get("/users", headers=bob).json() == {"users": ["alice", "bob"]}

    def test_select_and_reply(self, client):
        """The recipient can select the conversation and reply."""
        alice = signup(client, "alice")
        bob = signup(client, "bob")
        client.post("/conversations", json={"peer": "bob"}, headers=alice)
        client.post("/messages", json={"text": "hi"}, headers=alice)

        # Bob's session only learns about the message once it polls; starting
        # the chat explicitly goes through his (still empty) cache.
        conv = client.post("/conversations", json={"peer": "alice"}, headers=bob).json()
        conv_id = conv["selected_conv"]["id"]
        selected = client.post(f"/conversations/{conv_id}/select", headers=bob)
        assert selected.status_code == 200

        reply = client.post(
            "/messages", json={"text": "hey", "conversation_id": conv_id}, headers=bob
        ).json()
        assert reply["delivered"]

    def test_self_chat_rejected(self, client):
        """Starting a chat with yourself is a 422."""
        alice = signup(client, "alice")
        response = client.post("/conversations", json={"peer": "alice"}, headers=alice)
        assert response.status_code == 422

    def test_unknown_conversation(self, client):
        """Selecting an unknown conversation is a 422."""
        alice = signup(client, "alice")
        response = client.post("/conversations/nope/select", headers=alice)
        assert response.status_code == 422


class TestStoreRoutes:
    """Test the key-value routes."""

    def test_put_then_get(self, client):
        """A stored value reads back."""
        assert client.put("/kv/greeting", json={"value": "hello"}).status_code == 200
        assert client.get("/kv/greeting").json() == {"key": "greeting", "value": "hello"}

    def test_missing_key(self, client):
        """An absent key is a 404."""
        assert client.get("/kv/absent").status_code == 404
