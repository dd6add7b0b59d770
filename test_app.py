"""
HTTP tests for the chat session API: session lifecycle, trial gate,
sign-in migration, chat history management and message search.
"""

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.services.memory.db import build_engine

SESSIONS = "/api/v1/session"
CHATS = "/api/v1/chat/manage"


@pytest.fixture
def client(test_settings):
    app = create_app(test_settings, build_engine(test_settings.DATABASE_URL))
    with TestClient(app) as c:
        yield c


def _open_session(client, client_key=None):
    body = {"client_key": client_key} if client_key else {}
    res = client.post(SESSIONS, json=body)
    assert res.status_code == 201
    return res.json()


def _message(seq, content, role="user"):
    return {"id": str(1000 + seq), "role": role, "content": content, "sequence": seq}


def test_healthz(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_new_session_is_anonymous_with_full_trial(client):
    state = _open_session(client)
    assert state["identity"]["kind"] == "anonymous"
    assert state["identity"]["display_name"] == "Guest"
    assert state["can_start_turn"] is True
    assert state["remaining_trial_turns"] == 3
    assert state["messages"] == []

    again = client.get(f"{SESSIONS}/{state['session_id']}").json()
    assert again["identity"]["id"] == state["identity"]["id"]


def test_same_client_key_keeps_anonymous_identity(client):
    first = _open_session(client, client_key="browser-1")
    second = _open_session(client, client_key="browser-1")
    other = _open_session(client, client_key="browser-2")
    assert first["identity"]["id"] == second["identity"]["id"]
    assert first["identity"]["id"] != other["identity"]["id"]


def test_unknown_session_is_404(client):
    assert client.get(f"{SESSIONS}/missing").status_code == 404
    assert client.post(f"{SESSIONS}/missing/turns", json={"content": "hi"}).status_code == 404


def test_trial_limit_blocks_fourth_conversation(client):
    sid = _open_session(client)["session_id"]
    for i in range(3):
        res = client.post(f"{SESSIONS}/{sid}/turns", json={"content": f"question {i}"})
        assert res.status_code == 200
        # follow-ups in the same conversation are free
        assert client.post(f"{SESSIONS}/{sid}/turns", json={"content": "and then?"}).status_code == 200
        client.post(f"{SESSIONS}/{sid}/conversation/new")

    res = client.post(f"{SESSIONS}/{sid}/turns", json={"content": "one more"})
    assert res.status_code == 402
    assert res.json()["detail"] == "Trial limit reached. Please sign up to continue."

    notices = client.get(f"{SESSIONS}/{sid}/notices").json()["notices"]
    assert [n["code"] for n in notices] == ["trial_limit_reached"]
    assert client.get(f"{SESSIONS}/{sid}/notices").json()["notices"] == []

    state = client.get(f"{SESSIONS}/{sid}").json()
    assert state["can_start_turn"] is False
    assert state["remaining_trial_turns"] == 0


def test_user_messages_must_go_through_turns(client):
    sid = _open_session(client)["session_id"]
    res = client.post(f"{SESSIONS}/{sid}/messages", json={"role": "user", "content": "sneaky"})
    assert res.status_code == 400


def test_sign_in_saves_the_anonymous_conversation(client):
    sid = _open_session(client)["session_id"]
    client.post(f"{SESSIONS}/{sid}/turns", json={"content": "Is a verbal contract binding?"})
    res = client.post(f"{SESSIONS}/{sid}/messages", json={"role": "assistant", "content": "Often, yes."})
    assert res.json()["remote_id"] is None

    res = client.post(
        f"{SESSIONS}/{sid}/auth",
        json={"signed_in": {"id": "user-42", "display_name": "Ada", "email": "ada@example.com"}},
    )
    assert res.status_code == 200
    state = res.json()
    assert state["identity"]["kind"] == "authenticated"
    assert state["remaining_trial_turns"] is None
    chat_id = state["remote_id"]
    assert chat_id

    chat = client.get(CHATS, params={"chat_id": chat_id, "user_id": "user-42"}).json()
    assert chat["user_id"] == "user-42"
    assert chat["title"] == "Is a verbal contract binding?"
    assert [m["content"] for m in chat["messages"]] == ["Is a verbal contract binding?", "Often, yes."]

    res = client.post(f"{SESSIONS}/{sid}/turns", json={"content": "What about emails?"})
    assert res.json()["remote_id"] == chat_id
    chat = client.get(CHATS, params={"chat_id": chat_id, "user_id": "user-42"}).json()
    assert len(chat["messages"]) == 3

    history = client.get(CHATS, params={"user_id": "user-42"}).json()
    summaries = [s for day in history["history"].values() for s in day]
    assert [s["id"] for s in summaries] == [chat_id]
    assert summaries[0]["message_count"] == 3

    codes = [n["code"] for n in client.get(f"{SESSIONS}/{sid}/notices").json()["notices"]]
    assert codes == ["saved"]


def test_sign_out_starts_fresh_anonymous_session(client):
    sid = _open_session(client)["session_id"]
    client.post(f"{SESSIONS}/{sid}/auth", json={"signed_in": {"id": "user-42"}})
    client.post(f"{SESSIONS}/{sid}/turns", json={"content": "hello"})

    state = client.post(f"{SESSIONS}/{sid}/auth", json={"signed_out": True}).json()

    assert state["identity"]["kind"] == "anonymous"
    assert state["remote_id"] is None
    assert state["messages"] == []
    assert state["remaining_trial_turns"] == 3


def test_auth_event_must_be_exactly_one_kind(client):
    sid = _open_session(client)["session_id"]
    assert client.post(f"{SESSIONS}/{sid}/auth", json={}).status_code == 400
    res = client.post(f"{SESSIONS}/{sid}/auth", json={"signed_in": {"id": "u"}, "signed_out": True})
    assert res.status_code == 400


def test_load_conversation_into_session(client):
    res = client.post(CHATS, json={"user_id": "user-42", "messages": [_message(0, "Review my NDA")]})
    chat_id = res.json()["id"]
    sid = _open_session(client)["session_id"]

    assert client.post(f"{SESSIONS}/{sid}/conversation/load", json={"chat_id": chat_id}).status_code == 404

    client.post(f"{SESSIONS}/{sid}/auth", json={"signed_in": {"id": "user-42"}})
    state = client.post(f"{SESSIONS}/{sid}/conversation/load", json={"chat_id": chat_id}).json()
    assert state["remote_id"] == chat_id
    assert [m["content"] for m in state["messages"]] == ["Review my NDA"]


def test_chat_manage_crud(client):
    assert client.post(CHATS, json={"user_id": "user-1", "messages": []}).status_code == 400

    res = client.post(CHATS, json={"user_id": "user-1", "messages": [_message(0, "x" * 40)]})
    assert res.status_code == 200
    chat_id = res.json()["id"]
    assert client.get(CHATS, params={"chat_id": chat_id, "user_id": "user-1"}).json()["title"] == "x" * 30 + "..."

    update = {
        "chat_id": chat_id,
        "user_id": "user-1",
        "messages": [_message(0, "first"), _message(1, "second", role="assistant")],
    }
    assert client.put(CHATS, json=update).json() == {"status": "ok"}
    assert client.put(CHATS, json={**update, "user_id": "user-2"}).status_code == 403
    assert client.put(CHATS, json={**update, "chat_id": "missing"}).status_code == 404

    chat = client.get(CHATS, params={"chat_id": chat_id, "user_id": "user-1"}).json()
    assert [m["content"] for m in chat["messages"]] == ["first", "second"]
    assert client.get(CHATS, params={"chat_id": chat_id, "user_id": "user-2"}).status_code == 403
    assert client.get(CHATS).status_code == 400

    delete = {"chat_id": chat_id, "user_id": "user-2"}
    assert client.request("DELETE", CHATS, json=delete).status_code == 403
    delete["user_id"] = "user-1"
    assert client.request("DELETE", CHATS, json=delete).status_code == 200
    assert client.get(CHATS, params={"chat_id": chat_id, "user_id": "user-1"}).status_code == 404


def test_search_lifecycle(client):
    sid = _open_session(client)["session_id"]
    client.post(f"{SESSIONS}/{sid}/turns", json={"content": "Can we file habeas corpus?"})
    client.post(f"{SESSIONS}/{sid}/messages", json={"content": "Yes, petition the court for a writ."})

    assert client.post(f"{SESSIONS}/{sid}/search/open").json()["state"] == "open"

    res = client.post(f"{SESSIONS}/{sid}/search", json={"query": "habeus"}).json()
    assert res["state"] == "queried"
    assert res["matched_indices"] == [0]
    assert res["terms"] == ["habeus"]
    assert res["current"] == 0

    res = client.post(f"{SESSIONS}/{sid}/search/navigate", json={"direction": "next"}).json()
    assert res["cursor"] == 0

    res = client.post(f"{SESSIONS}/{sid}/search/close").json()
    assert res["state"] == "closed"
    assert res["matched_indices"] == []
    assert res["cursor"] is None
    assert client.get(f"{SESSIONS}/{sid}/search").json()["terms"] == []


def test_close_session(client):
    sid = _open_session(client)["session_id"]
    assert client.delete(f"{SESSIONS}/{sid}").status_code == 204
    assert client.delete(f"{SESSIONS}/{sid}").status_code == 404


def test_reading_a_chat_requires_its_owner(client):
    res = client.post(CHATS, json={"user_id": "owner-1", "messages": [_message(0, "confidential settlement")]})
    chat_id = res.json()["id"]

    assert client.get(CHATS, params={"chat_id": chat_id}).status_code == 400
    res = client.get(CHATS, params={"chat_id": chat_id, "user_id": "someone-else"})
    assert res.status_code == 403
    assert "confidential" not in res.text
    assert client.get(CHATS, params={"chat_id": chat_id, "user_id": "owner-1"}).status_code == 200
