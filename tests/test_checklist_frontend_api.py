from __future__ import annotations

from pathlib import Path

import pytest
from starlette.testclient import TestClient

from order_checklist.checklist.frontend import create_app
from order_checklist.checklist.service import CHECKLIST_TTL_SECONDS
from order_checklist.checklist.streaming import decode_stream
from order_checklist.errors import TransportFailure

from conftest import FakeModel


ITEMS = [
    {"name": "Bio Milch", "quantity": 2, "price": 1.19},
    {"name": "Brot", "quantity": 1, "price": 2.5},
]


def _client(tmp_path: Path, db, cache, clock, settings, model=None) -> TestClient:
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    app = create_app(
        root_dir=str(tmp_path),
        db=db,
        cache=cache,
        clock=clock,
        settings=settings,
        model=model or FakeModel(items=ITEMS, fragments=["Hello", ", ", "world"]),
    )
    return TestClient(app)


@pytest.fixture
def client(tmp_path: Path, db, cache, clock, settings) -> TestClient:
    return _client(tmp_path, db, cache, clock, settings)


def _session_payload(session_id: str = "s1", **extra):
    payload = {
        "id": session_id,
        "messages": [
            {"id": "m1", "role": "user", "content": "What is on   this order?", "timestamp": "2024-05-01T10:00:00Z"},
        ],
    }
    payload.update(extra)
    return payload


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_image_chat_then_shared_link_until_expiry(client: TestClient, clock) -> None:
    resp = client.post("/chat", json={"messages": [], "imageUrls": ["https://img.test/order.jpg"]})
    assert resp.status_code == 200
    body = resp.json()
    checklist_id = body["checklistId"]
    assert checklist_id
    assert body["items"] == ITEMS
    assert body["summary"].startswith("Found 2 items:\n\n1. Bio Milch - Quantity: 2, Price: $1.19")

    shared = client.get(f"/checklist/{checklist_id}")
    assert shared.status_code == 200
    data = shared.json()
    assert data["items"] == ITEMS
    assert data["createdAt"] == "2023-11-14T22:13:20.000Z"
    assert data["expiresAt"] == "2023-11-16T22:13:20.000Z"

    clock.advance(CHECKLIST_TTL_SECONDS - 1)
    assert client.get(f"/checklist/{checklist_id}").status_code == 200

    clock.advance(1)
    expired = client.get(f"/checklist/{checklist_id}")
    assert expired.status_code == 404
    assert expired.json() == {"error": "Checklist not found or expired"}


def test_checklist_text_export(client: TestClient) -> None:
    checklist_id = client.post("/chat", json={"imageUrls": ["https://img.test/a.jpg"]}).json()["checklistId"]

    resp = client.get(f"/checklist/{checklist_id}/text")
    assert resp.status_code == 200
    assert resp.text == "1. Bio Milch - Quantity: 2, Price: 1.19\n2. Brot - Quantity: 1, Price: 2.5"
    assert f"checklist-{checklist_id}.txt" in resp.headers["content-disposition"]


def test_unknown_checklist_is_404(client: TestClient) -> None:
    assert client.get("/checklist/does-not-exist").status_code == 404
    assert client.get("/checklist/does-not-exist/text").status_code == 404


def test_text_chat_streams_framed_fragments(client: TestClient) -> None:
    resp = client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "Hi"}], "imageUrls": []},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text == '0:"Hello"\n0:", "\n0:"world"\n'
    assert "".join(decode_stream([resp.text])) == "Hello, world"


def test_stream_cut_short_keeps_delivered_text(tmp_path: Path, db, cache, clock, settings) -> None:
    class FlakyModel(FakeModel):
        def stream_chat(self, messages):
            yield "partial"
            raise TransportFailure("chat stream aborted")

    client = _client(tmp_path, db, cache, clock, settings, model=FlakyModel())
    resp = client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

    assert resp.status_code == 200
    assert list(decode_stream([resp.text])) == ["partial"]


def test_model_failure_is_generic_500(tmp_path: Path, db, cache, clock, settings) -> None:
    client = _client(tmp_path, db, cache, clock, settings, model=FakeModel(error=TransportFailure("boom")))

    for payload in (
        {"imageUrls": ["https://img.test/a.jpg"]},
        {"messages": [{"role": "user", "content": "Hi"}]},
    ):
        resp = client.post("/chat", json=payload)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}
    assert len(cache) == 0


def test_session_crud(client: TestClient) -> None:
    assert client.get("/chat-sessions").json() == []

    saved = client.post("/chat-sessions", json=_session_payload())
    assert saved.status_code == 200
    assert saved.json() == {"success": True, "version": 1}

    session = client.get("/chat-sessions/s1").json()
    assert session["title"] == "What is on this order?"
    assert session["createdAt"] == "2023-11-14T22:13:20.000Z"
    assert session["updatedAt"] == "2023-11-14T22:13:20.000Z"
    assert session["messages"][0]["content"] == "What is on   this order?"

    # PUT takes the id from the path, not the body.
    put = client.put("/chat-sessions/s1", json=_session_payload("ignored", title="Renamed"))
    assert put.json() == {"success": True, "version": 2}
    listed = client.get("/chat-sessions").json()
    assert [(s["id"], s["title"]) for s in listed] == [("s1", "Renamed")]

    assert client.delete("/chat-sessions/s1").json() == {"success": True}
    assert client.delete("/chat-sessions/s1").status_code == 200

    missing = client.get("/chat-sessions/s1")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Chat session not found"}


def test_save_without_created_at_keeps_creation_time(client: TestClient, clock) -> None:
    client.post("/chat-sessions", json={"id": "s1"})
    clock.advance(3600)

    assert client.put("/chat-sessions/s1", json={"title": "Renamed"}).status_code == 200
    assert client.post("/chat-sessions", json={"id": "s1", "title": "Again"}).status_code == 200

    session = client.get("/chat-sessions/s1").json()
    assert session["createdAt"] == "2023-11-14T22:13:20.000Z"
    assert session["updatedAt"] == "2023-11-14T23:13:20.000Z"
    assert session["title"] == "Again"


def test_clear_all_sessions(client: TestClient) -> None:
    client.post("/chat-sessions", json=_session_payload("a"))
    client.post("/chat-sessions", json=_session_payload("b"))

    assert client.delete("/chat-sessions").json() == {"success": True}
    assert client.get("/chat-sessions").json() == []


def test_stale_versioned_save_is_409(client: TestClient) -> None:
    assert client.post("/chat-sessions", json=_session_payload(version=0)).json()["version"] == 1
    assert client.post("/chat-sessions", json=_session_payload(title="Mine", version=1)).json()["version"] == 2

    stale = client.post("/chat-sessions", json=_session_payload(title="Theirs", version=1))
    assert stale.status_code == 409
    assert client.get("/chat-sessions/s1").json()["title"] == "Mine"


def test_invalid_session_payload_is_500(client: TestClient) -> None:
    resp = client.post("/chat-sessions", json={"title": "no id"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


def test_store_failure_is_500(client: TestClient, db) -> None:
    with db.connect() as conn:
        conn.execute("DROP TABLE chat_sessions;")
        conn.commit()

    resp = client.get("/chat-sessions")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


def test_routes_are_served_under_api_prefix(client: TestClient) -> None:
    client.post("/api/chat-sessions", json=_session_payload())

    assert client.get("/api/chat-sessions/s1").status_code == 200
    assert [s["id"] for s in client.get("/chat-sessions").json()] == ["s1"]
    assert client.get("/api/health").status_code == 200
