"""Tests for intervention report endpoints."""

from app.services.chat import get_chat_cache
from app.services.chat.cache import messages_key, reset_key
from tests.conftest import seed_machine


def test_save_draft_keeps_chat(client):
    machine_id = seed_machine("Presse A")
    get_chat_cache().set(messages_key(machine_id), "[]")

    response = client.post(
        "/api/interventions/",
        json={"machine_id": machine_id, "description": "", "actions": "Inspection"},
    )
    assert response.status_code == 200
    assert response.json()["status"] == "brouillon"
    assert get_chat_cache().get(messages_key(machine_id)) == "[]"
    assert get_chat_cache().get(reset_key(machine_id)) is None


def test_finalize_requests_chat_reset(client):
    machine_id = seed_machine("Presse A")
    get_chat_cache().set(messages_key(machine_id), "[]")

    response = client.post(
        "/api/interventions/",
        json={
            "machine_id": machine_id,
            "description": "Bruit au niveau du vérin",
            "actions": "Remplacement du joint",
            "time_spent": 1.5,
            "finalized": True,
        },
    )
    assert response.status_code == 200
    assert response.json()["status"] == "termine"
    assert get_chat_cache().get(messages_key(machine_id)) is None
    assert get_chat_cache().get(reset_key(machine_id)) == "true"


def test_finalize_requires_description(client):
    machine_id = seed_machine("Presse A")
    response = client.post(
        "/api/interventions/", json={"machine_id": machine_id, "finalized": True}
    )
    assert response.status_code == 400


def test_unknown_machine(client):
    response = client.post("/api/interventions/", json={"machine_id": "missing"})
    assert response.status_code == 404


def test_list_interventions_by_machine(client):
    m1 = seed_machine("Presse A")
    m2 = seed_machine("Tour B")
    client.post("/api/interventions/", json={"machine_id": m1, "description": "a"})
    client.post("/api/interventions/", json={"machine_id": m2, "description": "b"})

    response = client.get("/api/interventions/", params={"machine_id": m1})
    assert [r["description"] for r in response.json()] == ["a"]
    assert len(client.get("/api/interventions/").json()) == 2
