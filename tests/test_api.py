"""HTTP surface tests: FastAPI app wired to in-memory repositories."""

import uuid

import pytest
from fastapi.testclient import TestClient

from farmbox.config import settings
from farmbox.main import create_app
from farmbox.routers.deps import build_services

SCHEDULER_TOKEN = "cron-secret"

NEW_SUBSCRIPTION = {
    "category": "vegetables",
    "box_size": "MEDIUM",
    "frequency": "WEEKLY",
    "delivery_day": 5,
    "delivery_address": "12 Rue des Lilas, 75011 Paris",
    "delivery_zone": "paris-11",
    "preferences": {"excluded_items": ["Navets"], "preferred_farms": []},
}


@pytest.fixture
def client(subscription_repo, trial_repo, catalog, notifier, clock, monkeypatch):
    monkeypatch.setattr(settings, "SCHEDULER_TOKEN", SCHEDULER_TOKEN)
    services = build_services(subscription_repo, trial_repo, catalog, notifier, now=clock)
    return TestClient(create_app(services))


@pytest.fixture
def headers(customer_id):
    return {"X-Customer-Id": str(customer_id)}


def _subscribe(client, headers, **overrides):
    resp = client.post("/api/subscriptions/", json={**NEW_SUBSCRIPTION, **overrides}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_create_subscription(client, headers):
    body = _subscribe(client, headers)
    assert body["status"] == "ACTIVE"
    assert body["next_delivery"] == "2026-03-06"
    assert body["preferences"]["excluded_items"] == ["Navets"]
    assert body["skips_this_month"] == 0


def test_customer_header_required(client):
    assert client.get("/api/subscriptions/").status_code == 401
    assert client.get("/api/subscriptions/", headers={"X-Customer-Id": "nope"}).status_code == 401


def test_domain_errors_are_rendered(client, headers):
    _subscribe(client, headers)

    resp = client.post("/api/subscriptions/", json=NEW_SUBSCRIPTION, headers=headers)
    assert resp.status_code == 409
    assert resp.json() == {
        "success": False,
        "error": {
            "code": "CONFLICT",
            "message": "You already have an active subscription for vegetables",
        },
    }

    resp = client.post(
        "/api/subscriptions/",
        json={**NEW_SUBSCRIPTION, "category": "herbs", "box_size": "FAMILY"},
        headers=headers,
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_pause_resume_skip_cancel_flow(client, headers):
    sub_id = _subscribe(client, headers)["id"]
    base = f"/api/subscriptions/{sub_id}"

    resp = client.post(f"{base}/skip", json={"skip_date": "2026-03-13"}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["skip_date"] == "2026-03-13"

    resp = client.post(f"{base}/skip", json={"skip_date": "2026-03-05"}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "PRECONDITION_FAILED"

    assert client.delete(f"{base}/skip/2026-03-13", headers=headers).json()["skips_this_month"] == 0

    resp = client.post(f"{base}/pause", json={"weeks": 2, "reason": "Holidays"}, headers=headers)
    assert resp.status_code == 201
    assert client.get(base, headers=headers).json()["status"] == "PAUSED"

    resp = client.delete(f"{base}/pause", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACTIVE"

    resp = client.post(f"{base}/cancel", json={"reason": "Moving"}, headers=headers)
    assert resp.json()["status"] == "CANCELLED"
    assert resp.json()["next_delivery"] is None

    detail = client.get(base, headers=headers).json()
    assert [e["type"] for e in detail["history"]] == [
        "CREATED", "SKIPPED", "UNSKIPPED", "PAUSED", "RESUMED", "CANCELLED",
    ]
    assert len(detail["pauses"]) == 1
    assert detail["skips"] == []


def test_update_subscription(client, headers):
    sub_id = _subscribe(client, headers)["id"]
    resp = client.patch(f"/api/subscriptions/{sub_id}", json={"delivery_day": 2}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["next_delivery"] == "2026-03-10"


def test_list_filters_by_status(client, headers):
    _subscribe(client, headers)
    fruit = _subscribe(client, headers, category="fruits")
    client.post(f"/api/subscriptions/{fruit['id']}/cancel", headers=headers)

    active = client.get("/api/subscriptions/", params={"status": "ACTIVE"}, headers=headers).json()
    assert [s["category"] for s in active] == ["vegetables"]


def test_other_customer_gets_not_found(client, headers):
    sub_id = _subscribe(client, headers)["id"]
    resp = client.get(f"/api/subscriptions/{sub_id}", headers={"X-Customer-Id": str(uuid.uuid4())})
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


def test_box_preview(client, headers):
    sub_id = _subscribe(client, headers)["id"]
    body = client.get(f"/api/subscriptions/{sub_id}/preview", headers=headers).json()
    assert [p["name"] for p in body["products"]] == ["Carottes", "Poireaux", "Courgettes"]
    assert body["value_range"] == [40.0, 55.0]
    assert body["actual_value"] == 47.0


def test_categories(client):
    body = client.get("/api/categories/").json()
    herbs = next(c for c in body["categories"] if c["id"] == "herbs")
    assert herbs["box_sizes"] == ["SMALL", "MEDIUM"]
    assert body["box_prices"]["MEDIUM"] == 45.0


def test_trial_flow(client, headers, farm):
    resp = client.post("/api/trials/", json={"farm_id": str(farm.id), "box_size": "SMALL"}, headers=headers)
    assert resp.status_code == 201
    trial_id = resp.json()["id"]

    again = client.post("/api/trials/", json={"farm_id": str(farm.id), "box_size": "SMALL"}, headers=headers)
    assert again.status_code == 409

    availability = client.get(f"/api/trials/farms/{farm.id}/availability", headers=headers).json()
    assert availability["available"] is False
    assert availability["existing_trial"]["id"] == trial_id

    hook_headers = {"X-Scheduler-Token": SCHEDULER_TOKEN}
    assert client.post(f"/api/trials/{trial_id}/delivered").status_code == 403
    assert client.post(
        f"/api/trials/{trial_id}/order", json={"order_id": str(uuid.uuid4())}, headers=hook_headers,
    ).status_code == 200
    assert client.post(f"/api/trials/{trial_id}/delivered", headers=hook_headers).json()["status"] == "DELIVERED"

    resp = client.post(
        f"/api/trials/{trial_id}/convert",
        json={
            "frequency": "WEEKLY",
            "delivery_day": 2,
            "delivery_address": "12 Rue des Lilas",
            "delivery_zone": "paris-11",
        },
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["farm_id"] == str(farm.id)
    assert resp.json()["trial_converted"] is True
    assert client.get(f"/api/trials/{trial_id}", headers=headers).json()["status"] == "CONVERTED"


def test_trial_farms(client, headers, farm, other_farm):
    client.post("/api/trials/", json={"farm_id": str(farm.id), "box_size": "SMALL"}, headers=headers)
    farms = client.get("/api/trials/farms", headers=headers).json()
    assert [f["id"] for f in farms] == [str(other_farm.id)]


def test_scheduler_endpoints_need_token(client, headers):
    _subscribe(client, headers)
    assert client.post("/api/admin/reset-monthly-skips").status_code == 403
    assert client.post(
        "/api/admin/reset-monthly-skips", headers={"X-Scheduler-Token": "wrong"}
    ).status_code == 403

    token = {"X-Scheduler-Token": SCHEDULER_TOKEN}
    resp = client.post("/api/admin/reset-monthly-skips", headers=token)
    assert resp.json() == {"job": "reset_monthly_skips", "affected": 1}
    assert client.post("/api/admin/reset-yearly-pauses", headers=token).json()["affected"] == 1
    assert client.post("/api/admin/send-reminders", headers=token).json() == {
        "job": "send_reminders", "affected": 1,
    }


def test_pause_with_utc_timestamps_can_be_resumed(client, headers):
    sub_id = _subscribe(client, headers)["id"]
    base = f"/api/subscriptions/{sub_id}"

    resp = client.post(
        f"{base}/pause",
        json={"start_date": "2026-03-04T12:00:00Z", "end_date": "2026-03-14T12:00:00+00:00"},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["end_date"] == "2026-03-14T12:00:00"

    resp = client.delete(f"{base}/pause", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACTIVE"

    # resumed before the pause began: the record collapses onto its start
    pause = client.get(base, headers=headers).json()["pauses"][0]
    assert pause["start_date"] == pause["end_date"] == "2026-03-04T12:00:00"


def test_preferences_round_trip(client, headers):
    created = _subscribe(client, headers)
    resp = client.patch(
        f"/api/subscriptions/{created['id']}",
        json={"preferences": created["preferences"]},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["preferences"]["excluded_items"] == ["Navets"]
