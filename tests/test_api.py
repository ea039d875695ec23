"""HTTP surface tests — routers wired to the in-memory repository via dependency overrides."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import pytest
from fastapi.testclient import TestClient

from dependencies import TrackingRuntime, get_controller, get_propagation, get_repository, get_runtime
from fakes import make_driver, make_job, make_route, make_truck, make_vehicle
from main import app
from services.status_propagation import StatusPropagationService

CHECKLIST = [{"item": "VIN matches paperwork", "checked": True}]


@pytest.fixture
def client(repo, controller, ledger, cache):
    runtime = TrackingRuntime(cache=cache, ledger=ledger, audit=controller.audit, route_locks=controller.route_locks)
    app.dependency_overrides[get_controller] = lambda: controller
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_runtime] = lambda: runtime
    app.dependency_overrides[get_propagation] = lambda: StatusPropagationService(repo)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def setup(repo):
    driver = make_driver(repo)
    vehicle = make_vehicle(repo)
    job = make_job(repo, vehicle)
    route = make_route(repo, driver, [("pickup", job), ("drop", job)], truck=make_truck(repo))
    return driver, route, job, vehicle


def _base(driver, route):
    return f"/api/drivers/{driver.id}/routes/{route.id}"


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_start_route(client, setup):
    driver, route, _, _ = setup
    resp = client.post(f"{_base(driver, route)}/start")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "In Progress"
    assert body["state"] == "Started"
    assert body["stops"][0]["status"] == "In Progress"


def test_error_mapping(client, repo, setup):
    driver, route, _, _ = setup
    stranger = make_driver(repo, name="Sam Okafor")

    assert client.post(f"{_base(stranger, route)}/start").status_code == 403
    assert client.post(f"/api/drivers/{driver.id}/routes/{driver.id}/start").status_code == 404
    assert client.post(f"{_base(driver, route)}/resume").status_code == 400

    client.post(f"{_base(driver, route)}/start")
    resp = client.post(f"{_base(driver, route)}/start")
    assert resp.status_code == 409
    assert resp.json() == {"detail": "Route is already in progress"}


def test_stop_actions_over_http(client, setup):
    driver, route, job, vehicle = setup
    pickup, drop = sorted(route.stops, key=lambda s: s.sequence)
    client.post(f"{_base(driver, route)}/start")

    resp = client.post(f"{_base(driver, route)}/stops/{pickup.id}/complete", json={})
    assert resp.status_code == 400
    assert "Checklist" in resp.json()["detail"]

    resp = client.post(
        f"{_base(driver, route)}/stops/{pickup.id}/complete",
        json={
            "checklist": CHECKLIST,
            "photos": [{"url": "https://cdn.example.com/front.jpg", "photo_type": "vehicle"}],
        },
    )
    assert resp.status_code == 200
    assert job.status == "In Transit"
    assert job.pickup_photos == ["https://cdn.example.com/front.jpg"]

    resp = client.post(f"{_base(driver, route)}/stops/{drop.id}/skip", json={"reason": " "})
    assert resp.status_code == 400

    resp = client.post(f"{_base(driver, route)}/stops/{drop.id}/skip", json={"reason": "dealer closed"})
    assert resp.status_code == 200
    assert resp.json()["stops"][1]["skip_reason"] == "dealer closed"
    assert job.status == "Cancelled"
    assert vehicle.status == "Cancelled"


def test_update_stop_endpoint(client, setup):
    driver, route, _, _ = setup
    pickup, drop = sorted(route.stops, key=lambda s: s.sequence)
    client.post(f"{_base(driver, route)}/start")

    resp = client.patch(
        f"{_base(driver, route)}/stops/{pickup.id}",
        json={"checklist": CHECKLIST, "notes": "Gate code 4411"},
    )
    assert resp.status_code == 200
    stop = resp.json()["stops"][0]
    assert stop["status"] == "In Progress"
    assert stop["notes"] == "Gate code 4411"
    assert stop["checklist"][0]["item"] == "VIN matches paperwork"

    resp = client.patch(f"{_base(driver, route)}/stops/{drop.id}", json={"notes": "too early"})
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Stop is not in progress"}


def test_photo_endpoints(client, setup):
    driver, route, _, _ = setup
    pickup = sorted(route.stops, key=lambda s: s.sequence)[0]
    client.post(f"{_base(driver, route)}/start")
    url = f"{_base(driver, route)}/stops/{pickup.id}/photos"

    assert client.post(url, json={"photos": []}).status_code == 422
    resp = client.post(url, json={"photos": [{"url": "https://cdn.example.com/a.jpg"}]})
    assert resp.status_code == 200
    assert resp.json()["stops"][0]["photos"][0]["photo_type"] == "stop"

    assert client.delete(f"{url}/3").status_code == 404
    resp = client.delete(f"{url}/0")
    assert resp.json()["stops"][0]["photos"] == []


def test_location_and_tracking_read_back(client, setup):
    driver, route, _, _ = setup
    client.post(f"{_base(driver, route)}/start")

    ping = {"latitude": 41.88, "longitude": -87.63, "accuracy": 5.0, "speed": 11.0}
    first = client.patch(f"/api/drivers/{driver.id}/location", json=ping).json()
    second = client.post(f"/api/tracking/routes/{route.id}/location", json=ping).json()
    assert first["tracked"] and second["tracked"]
    assert second["entry"]["position"] == first["entry"]["position"] + 1

    summary = client.get(f"/api/tracking/routes/{route.id}").json()
    assert summary["status"] == "active"
    assert summary["location_count"] == 2

    history = client.get(f"/api/tracking/routes/{route.id}/history").json()
    assert [a["action"] for a in history["actions"]][:2] == ["start_route", "start_stop"]

    client.post(f"{_base(driver, route)}/complete")
    summary = client.get(f"/api/tracking/routes/{route.id}").json()
    assert summary["status"] == "completed"
    assert summary["statistics"]["stops_completed"] == 0


def test_tracking_unknown_route(client):
    route_id = "7d3b1f0a-2c4e-4b8f-9a6d-5e1c0b9f8a27"
    assert client.get(f"/api/tracking/routes/{route_id}").status_code == 404
    assert client.get(f"/api/tracking/routes/{route_id}/history").status_code == 404
    resp = client.post(f"/api/tracking/routes/{route_id}/location", json={"latitude": 1, "longitude": 2})
    assert resp.status_code == 404


def test_location_validation(client, setup):
    driver, _, _, _ = setup
    resp = client.patch(f"/api/drivers/{driver.id}/location", json={"latitude": 120, "longitude": 0})
    assert resp.status_code == 422


def test_failed_save_returns_503(client, repo, setup):
    driver, route, _, _ = setup
    repo.fail_commits = 1
    resp = client.post(f"{_base(driver, route)}/start")
    assert resp.status_code == 503


def test_admin_recompute(client, repo, setup):
    driver, route, job, vehicle = setup
    pickup = sorted(route.stops, key=lambda s: s.sequence)[0]
    pickup.status = "Completed"

    resp = client.post(f"/api/admin/routes/{route.id}/recompute")
    assert resp.status_code == 200
    assert resp.json() == {
        "transport_jobs": {str(job.id): "In Transit"},
        "vehicles": {str(vehicle.id): "In Transport"},
    }

    resp = client.post(f"/api/admin/transport-jobs/{job.id}/recompute")
    assert resp.json()["transport_jobs"] == {str(job.id): "In Transit"}
    assert client.post(f"/api/admin/transport-jobs/{driver.id}/recompute").status_code == 404
