import os
from datetime import datetime

import httpx
import streamlit as st

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
REFRESH_SECONDS = float(os.getenv("UI_REFRESH_SECONDS", "2"))


def api() -> httpx.Client:
    headers = {}
    if st.session_state.get("token"):
        headers["X-Session-Token"] = st.session_state.token
    return httpx.Client(base_url=API_BASE_URL, headers=headers, timeout=30.0)


def call(method: str, url: str, **kwargs) -> dict | None:
    """Call the API; on a reported failure show its message and return None."""
    with api() as client:
        response = client.request(method, url, **kwargs)
    if response.is_success:
        return response.json()
    if response.status_code == 401 and url not in ("/auth/login", "/auth/signup"):
        st.session_state.token = None
    try:
        body = response.json()
    except ValueError:
        body = {}
    st.session_state.error = body.get("error") or body.get("detail") or "Request failed"
    return None


def authenticate() -> None:
    mode = "signup" if st.session_state.is_signup else "login"
    output = call(
        "POST",
        f"/auth/{mode}",
        json={"username": st.session_state.username, "password": st.session_state.password},
    )
    if output:
        st.session_state.token = output["session_token"]
        st.session_state.error = ""


def change_conversation() -> None:
    call("POST", f"/conversations/{st.session_state.conv_select}/select")


def format_time(timestamp: str) -> str:
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).strftime("%H:%M")
    except ValueError:
        return ""


if "token" not in st.session_state:
    st.session_state.token = None
    st.session_state.error = ""
    st.session_state.is_signup = False

if not st.session_state.token:
    st.title("Private Chat")
    if st.session_state.error:
        st.error(st.session_state.error)
    st.text_input("Username", key="username")
    st.text_input("Password", type="password", key="password")
    label = "Sign up" if st.session_state.is_signup else "Log in"
    if st.button(label):
        authenticate()
        st.rerun()
    toggle = "Already have an account? Log in" if st.session_state.is_signup else "Create an account"
    if st.button(toggle):
        st.session_state.is_signup = not st.session_state.is_signup
        st.session_state.error = ""
        st.rerun()
    st.stop()

state = call("GET", "/state")
if state is None:
    if not st.session_state.token:
        st.rerun()
    st.error(st.session_state.error)
    st.stop()

with st.sidebar:
    st.subheader(state["current_user"])
    if st.button("Log out"):
        call("POST", "/auth/logout")
        st.session_state.token = None
        st.rerun()

    peer = st.text_input("New conversation", placeholder="Username...").strip()
    if st.button("Start conversation") and peer:
        if call("POST", "/conversations", json={"peer": peer}):
            st.session_state.error = ""
        st.rerun()

    if st.session_state.error:
        st.error(st.session_state.error)

    conversations = {c["id"]: c for c in state["conversations"]}
    if conversations:
        selected = state["selected_conv"]
        ids = list(conversations)
        st.radio(
            "Conversations",
            options=ids,
            index=ids.index(selected["id"]) if selected else None,
            format_func=lambda conv_id: conversations[conv_id]["with"],
            key="conv_select",
            on_change=change_conversation,
        )
    else:
        st.caption("No conversations")


@st.fragment(run_every=REFRESH_SECONDS)
def thread() -> None:
    current = call("GET", "/state")
    if not current or not current["selected_conv"]:
        st.info("Select a conversation")
        return
    conv = current["selected_conv"]
    st.title(conv["with"])
    for message in conv["messages"]:
        role = "user" if message["from"] == current["current_user"] else "assistant"
        with st.chat_message(role):
            st.markdown(message["text"])
            st.caption(format_time(message["timestamp"]))


thread()

text = st.chat_input("Write your message...")
if text and state["selected_conv"]:
    call("POST", "/messages", json={"text": text, "conversation_id": state["selected_conv"]["id"]})
    st.rerun()
