from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from main import app

DRIVER = "driver-7"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("SEED_DEMO_TASKS", "false")
    monkeypatch.setenv("DEBOUNCE_SECONDS", "0.01")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "300")
    with TestClient(app) as c:
        yield c


def assign(client, **body):
    body.setdefault("driver_id", DRIVER)
    resp = client.post("/api/dispatch/tasks", json=body)
    assert resp.status_code == 200
    return resp.json()["task_id"]


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_unknown_driver_is_404(client):
    assert client.get("/api/drivers/nobody/tasks").status_code == 404
    assert client.get("/api/drivers/nobody/stats").status_code == 404
    assert client.post("/api/drivers/nobody/route", json={}).status_code == 404


def test_session_task_list_and_stats(client):
    old = (datetime.now(timezone.utc) - timedelta(hours=40)).isoformat()
    late = assign(client, client_name="Hotel Sava", latitude=44.81, longitude=20.47, created_at=old)
    fresh = assign(client, client_name="Market Plus", latitude=44.82, longitude=20.45)

    resp = client.post(f"/api/drivers/{DRIVER}/session")
    assert resp.status_code == 200
    body = resp.json()
    assert body["loading"] is False
    assert [v["task"]["id"] for v in body["pending"]] == [late, fresh]
    assert body["pending"][0]["urgency"]["tier"] == "urgent"

    stats = client.get(f"/api/drivers/{DRIVER}/stats").json()
    assert stats["pending"] == 2
    assert stats["urgent"] == 1
    assert stats["normal"] == 1


def test_refresh_picks_up_new_assignment(client):
    client.post(f"/api/drivers/{DRIVER}/session")
    task_id = assign(client, latitude=44.81, longitude=20.47)

    body = client.post(f"/api/drivers/{DRIVER}/tasks/refresh").json()
    assert [v["task"]["id"] for v in body["pending"]] == [task_id]

    assert client.delete(f"/api/dispatch/tasks/{task_id}").status_code == 200
    assert client.delete(f"/api/dispatch/tasks/{task_id}").status_code == 404
    body = client.post(f"/api/drivers/{DRIVER}/tasks/refresh").json()
    assert body["pending"] == []


def test_route_planning(client):
    near = assign(client, latitude=44.81, longitude=20.47)
    far = assign(client, latitude=44.86, longitude=20.52)
    blind = assign(client)
    client.post(f"/api/drivers/{DRIVER}/session")

    resp = client.post(
        f"/api/drivers/{DRIVER}/route",
        json={"task_ids": [far, near, blind], "origin": {"lat": 44.8, "lng": 20.46}},
    )
    assert resp.status_code == 200
    route = resp.json()
    assert [w["id"] for w in route["order"]] == [near, far]
    assert "origin=44.8,20.46" in route["navigation_url"]
    assert "destination=44.86,20.52" in route["navigation_url"]

    resp = client.post(f"/api/drivers/{DRIVER}/route", json={"task_ids": [blind]})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No requests with valid coordinates"


def test_bulk_pickup_and_delivery(client):
    a = assign(client, latitude=44.81, longitude=20.47)
    b = assign(client, latitude=44.82, longitude=20.48)
    client.post(f"/api/drivers/{DRIVER}/session")

    resp = client.post(
        f"/api/drivers/{DRIVER}/tasks/bulk",
        json={"task_ids": [a, b], "transition": "picked_up", "proof": {"photo_url": "https://cdn.example/p.jpg"}},
    )
    assert resp.status_code == 200
    assert resp.json()["message"] == "2 of 2 confirmed"

    body = client.get(f"/api/drivers/{DRIVER}/tasks").json()
    assert sorted(v["task"]["id"] for v in body["picked_up"]) == sorted([a, b])

    resp = client.post(
        f"/api/drivers/{DRIVER}/tasks/bulk",
        json={"task_ids": [a], "transition": "delivered", "proof": {"weight": "12,5"}},
    )
    assert resp.json()["succeeded_ids"] == [a]

    body = client.get(f"/api/drivers/{DRIVER}/tasks").json()
    assert [v["task"]["id"] for v in body["picked_up"]] == [b]


def test_bulk_rejects_unsupported_transition(client):
    a = assign(client)
    client.post(f"/api/drivers/{DRIVER}/session")
    resp = client.post(f"/api/drivers/{DRIVER}/tasks/bulk", json={"task_ids": [a], "transition": "assigned"})
    assert resp.status_code == 400


def test_close_session(client):
    client.post(f"/api/drivers/{DRIVER}/session")
    assert client.delete(f"/api/drivers/{DRIVER}/session").json()["closed"] is True
    assert client.delete(f"/api/drivers/{DRIVER}/session").json()["closed"] is False
    assert client.get(f"/api/drivers/{DRIVER}/tasks").status_code == 404


def test_websocket_requires_open_session(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/drivers/{DRIVER}") as ws:
            ws.receive_text()


def post_raw_json(client, url, text):
    return client.post(url, content=text, headers={"Content-Type": "application/json"})


@pytest.mark.parametrize("origin", ['{"lat": NaN, "lng": 20.4}', '{"lat": 999, "lng": 20.4}', '{"lat": 44.8, "lng": -200}'])
def test_route_rejects_origin_off_the_globe(client, origin):
    a = assign(client, latitude=44.81, longitude=20.47)
    client.post(f"/api/drivers/{DRIVER}/session")
    resp = post_raw_json(client, f"/api/drivers/{DRIVER}/route", f'{{"task_ids": ["{a}"], "origin": {origin}}}')
    assert resp.status_code == 422


def test_huge_pickup_window_does_not_break_the_list(client):
    assign(client, latitude=44.81, longitude=20.47, max_pickup_hours=1e11)
    client.post(f"/api/drivers/{DRIVER}/session")

    resp = client.get(f"/api/drivers/{DRIVER}/tasks")
    assert resp.status_code == 200
    view = resp.json()["pending"][0]
    assert view["task"]["deadline_hours"] is None
    assert view["urgency"]["tier"] == "normal"
    assert client.get(f"/api/drivers/{DRIVER}/stats").status_code == 200


def test_route_and_bulk_use_the_selection(client):
    near = assign(client, latitude=44.81, longitude=20.47)
    far = assign(client, latitude=44.86, longitude=20.52)
    blind = assign(client)
    client.post(f"/api/drivers/{DRIVER}/session")

    state = client.post(f"/api/drivers/{DRIVER}/selection/route/toggle-all", json={}).json()
    assert state["route_ids"] == [near, far]
    assert state["selectable_for_route"] == [near, far]

    resp = client.post(f"/api/drivers/{DRIVER}/route", json={"origin": {"lat": 44.8, "lng": 20.46}})
    assert resp.status_code == 200
    assert [w["id"] for w in resp.json()["order"]] == [near, far]

    resp = client.post(f"/api/drivers/{DRIVER}/selection/route/toggle", json={"task_id": blind})
    assert resp.status_code == 400
    resp = client.post(f"/api/drivers/{DRIVER}/selection/bulk/toggle", json={"task_id": "A-9999"})
    assert resp.status_code == 404

    state = client.post(f"/api/drivers/{DRIVER}/selection/bulk/toggle", json={"task_id": blind}).json()
    assert state["bulk_ids"] == [blind]
    assert state["has_pending_selected"] is True

    resp = client.post(f"/api/drivers/{DRIVER}/tasks/bulk", json={"transition": "picked_up"})
    assert resp.json()["succeeded_ids"] == [blind]

    state = client.get(f"/api/drivers/{DRIVER}/selection").json()
    assert state["bulk_ids"] == []
    state = client.delete(f"/api/drivers/{DRIVER}/selection/route").json()
    assert state["route_ids"] == []


def test_task_views_carry_countdown_and_colors(client):
    assign(client, latitude=44.81, longitude=20.47)
    body = client.post(f"/api/drivers/{DRIVER}/session").json()
    view = body["pending"][0]
    assert view["countdown"].startswith("47h")
    assert view["colors"] == {"bg": "#D1FAE5", "text": "#10B981"}


def test_countdown_stream(client):
    old = (datetime.now(timezone.utc) - timedelta(hours=50)).isoformat()
    task_id = assign(client, created_at=old)
    client.post(f"/api/drivers/{DRIVER}/session")

    with client.websocket_connect(f"/ws/drivers/{DRIVER}/tasks/{task_id}/countdown") as ws:
        frame = ws.receive_json()
    assert frame["task_id"] == task_id
    assert frame["is_overdue"] is True
    assert frame["text"].startswith("-2h")
    assert frame["tier"] == "urgent"

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/drivers/{DRIVER}/tasks/A-9999/countdown") as ws:
            ws.receive_text()
