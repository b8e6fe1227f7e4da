import asyncio
import importlib
from datetime import timedelta

from fastapi.testclient import TestClient

from api.routers.board import push_board_changes
from callback_board.models import Callback
from scheduling.clock import start_of_tomorrow
from storage.callback_store import CallbackStoreError, ChangeEvent


def _client():
    # Import lazily so environment variables (if any) can be set before import.
    mod = importlib.import_module("api.main")
    return TestClient(mod.app)


def _create(client, now, headers=None, **fields):
    body = {
        "lead_name": "Jane Doe",
        "scheduled_for": (now + timedelta(hours=2)).isoformat(),
        "phone_number": "+254700000001",
    }
    body.update(fields)
    r = client.post("/callbacks", json=body, headers=headers or {})
    assert r.status_code == 200
    return Callback.model_validate(r.json()["callback"])


def test_create_and_list_callbacks(app_state, now):
    client = _client()
    cb = _create(client, now, priority="high")

    r = client.get("/callbacks")
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 1
    assert body["callbacks"][0]["id"] == cb.id
    assert body["callbacks"][0]["priority"] == "high"
    assert cb.user_id == "default"


def test_callbacks_are_scoped_by_user_header(app_state, now):
    client = _client()
    _create(client, now, headers={"X-User-Id": "agent-7"})

    assert client.get("/callbacks").json()["total"] == 0
    assert client.get("/callbacks", headers={"X-User-Id": "agent-7"}).json()["total"] == 1


def test_invalid_priority_is_rejected(app_state, now):
    client = _client()
    r = client.post(
        "/callbacks",
        json={"lead_name": "X", "scheduled_for": now.isoformat(), "priority": "whenever"},
    )
    assert r.status_code == 422


def test_board_has_four_columns(app_state, now):
    client = _client()
    _create(client, now, scheduled_for=(now - timedelta(days=2)).isoformat())
    _create(client, now, scheduled_for=(now + timedelta(days=9)).isoformat())

    r = client.get("/board")
    assert r.status_code == 200
    body = r.json()

    assert [c["id"] for c in body["columns"]] == ["today", "thisWeek", "nextWeek", "later"]
    assert [c["count"] for c in body["columns"]] == [1, 0, 1, 0]
    assert body["overdue_count"] == 1
    assert body["columns"][0]["cards"][0]["due_label"] == "Overdue"
    # toasts from the two creates ride along with the board
    assert [n["message"] for n in body["notifications"]] == ["Callback created", "Callback created"]


def test_move_endpoint(app_state, now):
    client = _client()
    cb = _create(client, now)

    r = client.post("/board/move", json={"callback_id": cb.id, "target": "nextWeek"})
    assert r.status_code == 200
    assert r.json()["status"] == "moved"
    moved = Callback.model_validate(r.json()["callback"])
    assert moved.scheduled_for == now + timedelta(days=7)
    assert moved.status == "rescheduled"

    r = client.post("/board/move", json={"callback_id": cb.id, "target": cb.id})
    assert r.json() == {"status": "ignored"}

    r = client.post("/board/move", json={"callback_id": "missing", "target": "today"})
    assert r.status_code == 404


def test_patch_complete_cancel_delete(app_state, now):
    client = _client()
    a = _create(client, now)
    b = _create(client, now)
    c = _create(client, now)

    r = client.patch(f"/callbacks/{a.id}", json={"priority": "urgent", "notes": "VIP"})
    assert r.status_code == 200
    assert r.json()["callback"]["priority"] == "urgent"
    assert r.json()["callback"]["notes"] == "VIP"

    assert client.post(f"/callbacks/{a.id}/complete").json()["status"] == "completed"
    assert client.post(f"/callbacks/{b.id}/cancel").json()["status"] == "cancelled"
    assert client.delete(f"/callbacks/{c.id}").json() == {"status": "deleted", "id": c.id}

    assert client.get("/callbacks").json()["total"] == 0
    assert client.patch("/callbacks/missing", json={"priority": "low"}).status_code == 404
    assert client.delete("/callbacks/missing").status_code == 404


def test_write_failure_returns_500_with_toast(app_state, now, monkeypatch):
    client = _client()

    async def broken(data):
        raise CallbackStoreError("db down")

    monkeypatch.setattr(app_state.store, "create", broken)

    r = client.post(
        "/callbacks",
        json={"lead_name": "Jane Doe", "scheduled_for": now.isoformat()},
    )
    assert r.status_code == 500
    assert r.json()["detail"] == "Failed to create callback"

    notes = client.get("/notifications").json()["notifications"]
    assert [(n["level"], n["message"]) for n in notes] == [("error", "Failed to create callback")]


def test_wrap_up_schedules_callback(app_state, now):
    client = _client()

    r = client.post(
        "/wrap-up",
        json={"notes": "please call back tomorrow, important", "lead_name": "Jane Doe"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "scheduled"
    assert body["intent"]["priority"] == "high"
    cb = Callback.model_validate(body["callback"])
    assert cb.scheduled_for == start_of_tomorrow(now)

    r = client.post("/wrap-up", json={"notes": "not interested", "lead_name": "Jane Doe"})
    assert r.json()["status"] == "skipped"
    assert r.json()["callback"] is None


def test_intent_preview_does_not_create(app_state, now):
    client = _client()
    r = client.post("/intent", json={"notes": "call back asap"})
    assert r.status_code == 200
    assert r.json()["should_create_callback"] is True
    assert r.json()["priority"] == "urgent"
    assert client.get("/callbacks").json()["total"] == 0


def test_board_stream_pushes_on_change(app_state, now):
    mod = importlib.import_module("api.main")
    with TestClient(mod.app) as client:
        with client.websocket_connect("/ws/board") as ws:
            first = ws.receive_json()
            assert sum(c["count"] for c in first["columns"]) == 0

            _create(client, now)

            pushed = ws.receive_json()
            assert sum(c["count"] for c in pushed["columns"]) == 1

    assert app_state.get_session("default").subscription is None


def test_health_and_metrics(app_state, now):
    client = _client()
    _create(client, now)

    h = client.get("/health")
    assert h.status_code == 200
    assert h.json()["status"] == "healthy"
    assert h.json()["store"] == "in-memory"

    m = client.get("/metrics")
    assert m.status_code == 200
    assert "text/plain" in m.headers.get("content-type", "")
    assert 'callback_requests_total{endpoint="/callbacks",status="created"}' in m.text
    assert 'callbacks_created_total{source="manual"}' in m.text


def test_blank_lead_name_is_a_validation_error(app_state, now):
    client = _client()
    cb = _create(client, now)

    r = client.post("/callbacks", json={"lead_name": "   ", "scheduled_for": now.isoformat()})
    assert r.status_code == 422

    r = client.post("/wrap-up", json={"lead_name": "  ", "notes": "call back tomorrow"})
    assert r.status_code == 422

    r = client.patch(f"/callbacks/{cb.id}", json={"lead_name": ""})
    assert r.status_code == 422

    # the stored row is untouched and the board still loads
    listed = client.get("/callbacks").json()["callbacks"]
    assert [c["lead_name"] for c in listed] == ["Jane Doe"]
    assert client.get("/board").status_code == 200


def test_board_push_stops_quietly_when_socket_is_gone(app_state):
    class ClosedSocket:
        async def send_json(self, data):
            raise RuntimeError('Cannot call "send" once a close message has been sent.')

    session = app_state.get_session("default")

    async def scenario():
        changes = asyncio.Queue()
        changes.put_nowait(ChangeEvent(op="INSERT", id="cb-1", user_id="default"))
        await asyncio.wait_for(
            push_board_changes(ClosedSocket(), app_state.service, session, changes),
            timeout=1,
        )

    asyncio.run(scenario())
