"""Tests for the WebSocket chat session endpoint."""

from sqlmodel import Session, select

from app.models.chat import ChatMessage
from app.services.chat.feed import live_feed
from tests.conftest import seed_machine, test_engine

REPLY = "Vérifiez le vérin hydraulique."


def receive_until(ws, predicate):
    """Read frames until one matches, returning it."""
    while True:
        frame = ws.receive_json()
        if predicate(frame):
            return frame


def settled_state(frame):
    return frame["type"] == "state" and not frame["is_loading"] and not frame["is_typing"]


def welcomed(frame):
    return (
        settled_state(frame)
        and len(frame["messages"]) == 1
        and frame["messages"][0]["content"].startswith("✅ **MAIA**")
    )


def test_websocket_connect_disconnect(client):
    with client.websocket_connect("/api/chat/ws"):
        pass


def test_init_shows_welcome_with_machine_name(client):
    machine_id = seed_machine("Presse A")
    with client.websocket_connect("/api/chat/ws") as ws:
        ws.send_json({"type": "init", "machine_id": machine_id})
        frame = receive_until(ws, welcomed)

    assert frame["machine_id"] == machine_id
    assert "Presse A" in frame["messages"][0]["content"]


def test_send_round_trip_is_persisted(client):
    machine_id = seed_machine("Presse A")
    with client.websocket_connect("/api/chat/ws?technician_id=tech-1") as ws:
        ws.send_json({"type": "init", "machine_id": machine_id})
        receive_until(ws, welcomed)

        ws.send_json({"type": "send", "content": "La presse fait un bruit"})
        frame = receive_until(
            ws,
            lambda f: settled_state(f) and any(m["content"] == REPLY for m in f["messages"]),
        )

    user, reply = frame["messages"][1:]
    assert user["role"] == "user"
    assert user["status"] == "sent"
    assert reply["role"] == "assistant"

    with Session(test_engine) as session:
        rows = session.exec(
            select(ChatMessage)
            .where(ChatMessage.machine_id == machine_id)
            .order_by(ChatMessage.created_at)
        ).all()
    assert [(r.role, r.content) for r in rows] == [
        ("user", "La presse fait un bruit"),
        ("assistant", REPLY),
    ]
    assert rows[0].technician_id == "tech-1"


def test_history_is_restored_on_reconnect(client):
    machine_id = seed_machine("Presse A")
    with client.websocket_connect("/api/chat/ws") as ws:
        ws.send_json({"type": "init", "machine_id": machine_id})
        receive_until(ws, welcomed)
        ws.send_json({"type": "send", "content": "Fuite d'huile"})
        receive_until(
            ws, lambda f: settled_state(f) and any(m["content"] == REPLY for m in f["messages"])
        )

    with client.websocket_connect("/api/chat/ws") as ws:
        ws.send_json({"type": "init", "machine_id": machine_id})
        frame = receive_until(ws, lambda f: settled_state(f) and len(f["messages"]) == 3)

    assert [m["role"] for m in frame["messages"]] == ["assistant", "user", "assistant"]


def test_delete_chat(client):
    machine_id = seed_machine("Presse A")
    with client.websocket_connect("/api/chat/ws") as ws:
        ws.send_json({"type": "init", "machine_id": machine_id})
        receive_until(ws, welcomed)
        ws.send_json({"type": "send", "content": "Fuite d'huile"})
        receive_until(
            ws, lambda f: settled_state(f) and any(m["content"] == REPLY for m in f["messages"])
        )

        ws.send_json({"type": "delete"})
        frame = receive_until(ws, lambda f: f["type"] == "deleted")

    assert frame == {"type": "deleted", "machine_id": machine_id, "ok": True}
    with Session(test_engine) as session:
        assert session.exec(select(ChatMessage)).all() == []


def test_init_unknown_machine_reports_error(client):
    with client.websocket_connect("/api/chat/ws") as ws:
        ws.send_json({"type": "init", "machine_id": "missing"})
        frame = ws.receive_json()
    assert frame == {"type": "error", "detail": "Unknown machine"}


def test_invalid_frame_reports_error(client):
    with client.websocket_connect("/api/chat/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "detail": "Invalid frame"}
        ws.send_json({"type": "dance"})
        assert ws.receive_json()["type"] == "error"


def test_send_without_machine_reports_error(client):
    with client.websocket_connect("/api/chat/ws") as ws:
        ws.send_json({"type": "send", "content": "Bonjour"})
        assert ws.receive_json() == {"type": "error", "detail": "No machine selected"}


def test_http_delete_clears_live_sessions(client):
    machine_id = seed_machine("Presse A")
    cleared = []
    subscription = live_feed.subscribe(machine_id, lambda message: None, cleared.append)
    try:
        response = client.delete(f"/api/chat/{machine_id}")
    finally:
        subscription.unsubscribe()

    assert response.status_code == 200
    assert cleared == [machine_id]


def test_http_delete_reaches_open_websocket(client):
    machine_id = seed_machine("Presse A")
    with client.websocket_connect("/api/chat/ws") as ws:
        ws.send_json({"type": "init", "machine_id": machine_id})
        receive_until(ws, welcomed)
        ws.send_json({"type": "send", "content": "Fuite d'huile"})
        receive_until(
            ws, lambda f: settled_state(f) and any(m["content"] == REPLY for m in f["messages"])
        )

        assert client.delete(f"/api/chat/{machine_id}").status_code == 200
        frame = receive_until(ws, lambda f: f["type"] == "state" and f["messages"] == [])

    assert frame["machine_id"] == machine_id
