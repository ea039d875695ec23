"""Tests for job/vehicle recomputation against the in-memory repository."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import pytest
from unittest.mock import AsyncMock

from fakes import make_driver, make_job, make_route, make_vehicle
from services.status_propagation import StatusPropagationService


def _stop(route, stop_type):
    return next(s for s in route.stops if s.stop_type == stop_type)


@pytest.mark.asyncio
async def test_pickup_and_drop_on_different_routes(repo):
    """Job status looks at its stops wherever they live."""
    vehicle = make_vehicle(repo)
    job = make_job(repo, vehicle)
    leg1 = make_route(repo, make_driver(repo), [("pickup", job, "Completed")], status="In Progress", state="Started")
    leg2 = make_route(repo, make_driver(repo), [("drop", job, "Pending")])
    service = StatusPropagationService(repo)

    status = await service.on_stop_transition(leg1.id, 0, "Completed", "pickup", job.id)
    assert status == "In Transit"
    assert vehicle.status == "In Transport"

    _stop(leg2, "drop").status = "Completed"
    status = await service.on_stop_transition(leg2.id, 0, "Completed", "drop", job.id)
    assert status == "Delivered"
    assert vehicle.status == "Delivered"
    assert vehicle.delivered_at is not None
    assert job.status_changed_at is not None


@pytest.mark.asyncio
async def test_recompute_is_idempotent(repo):
    vehicle = make_vehicle(repo)
    job = make_job(repo, vehicle)
    route = make_route(
        repo, make_driver(repo),
        [("pickup", job, "Completed"), ("drop", job, "In Progress")],
        status="In Progress", state="Started",
    )
    service = StatusPropagationService(repo)

    await service.recompute_route(route.id)
    first = (job.status, vehicle.status, job.status_changed_at, repo.commits)
    await service.recompute_route(route.id)
    second = (job.status, vehicle.status, job.status_changed_at, repo.commits)

    assert first[:2] == ("In Transit", "In Transport")
    assert first == second


@pytest.mark.asyncio
async def test_delivered_at_stamped_once(repo):
    vehicle = make_vehicle(repo)
    make_job(repo, vehicle, status="Delivered")
    make_job(repo, vehicle, status="Cancelled")
    service = StatusPropagationService(repo)

    await service.recompute_vehicle(vehicle.id)
    stamped = vehicle.delivered_at
    await service.recompute_vehicle(vehicle.id)

    assert vehicle.status == "Delivered"
    assert stamped is not None
    assert vehicle.delivered_at == stamped


@pytest.mark.asyncio
async def test_non_job_stops_do_not_propagate(repo):
    job = make_job(repo)
    service = StatusPropagationService(repo)
    assert await service.on_stop_transition("r", 0, "Completed", "fuel", job.id) is None
    assert await service.on_stop_transition("r", 0, "Completed", "pickup", None) is None
    assert repo.commits == 0


@pytest.mark.asyncio
async def test_vehicle_failure_keeps_job_update(repo):
    """Vehicle recompute failing leaves the job updated and the vehicle stale."""
    vehicle = make_vehicle(repo)
    job = make_job(repo, vehicle)
    route = make_route(repo, make_driver(repo), [("pickup", job, "Completed")], status="In Progress", state="Started")
    repo.get_vehicle = AsyncMock(side_effect=ConnectionError("store unavailable"))
    service = StatusPropagationService(repo)

    status = await service.on_stop_transition(route.id, 0, "Completed", "pickup", job.id)

    assert status == "In Transit"
    assert job.status == "In Transit"
    assert vehicle.status == "Ready for Transport"
    assert repo.rollbacks == 1

    # store is back: the next recompute heals the vehicle
    del repo.get_vehicle
    await service.recompute_route(route.id)
    assert vehicle.status == "In Transport"


@pytest.mark.asyncio
async def test_missing_job_is_ignored(repo):
    service = StatusPropagationService(repo)
    assert await service.recompute_transport_job("6f1c1a52-3f43-4a39-9e10-2f4c2b1d6d11") is None
    assert await service.on_stop_transition("r", 1, "Completed", "drop", "6f1c1a52-3f43-4a39-9e10-2f4c2b1d6d11") is None


@pytest.mark.asyncio
async def test_recompute_route_reports_jobs_and_vehicles(repo):
    vehicle = make_vehicle(repo)
    job_a = make_job(repo, vehicle)
    job_b = make_job(repo)
    route = make_route(
        repo, make_driver(repo),
        [("pickup", job_a, "Completed"), ("pickup", job_b, "Skipped"), ("drop", job_a, "Pending")],
        status="In Progress", state="Started",
    )

    result = await StatusPropagationService(repo).recompute_route(route.id)

    assert result["transport_jobs"] == {job_a.id: "In Transit", job_b.id: "Cancelled"}
    assert result["vehicles"] == {vehicle.id: "In Transport"}


@pytest.mark.asyncio
async def test_vehicle_failure_returns_status_read_before_rollback(repo):
    """Rollback expires loaded objects, so the job status must be taken before it."""
    vehicle = make_vehicle(repo)
    job = make_job(repo, vehicle)
    route = make_route(repo, make_driver(repo), [("drop", job, "Completed")], status="In Progress", state="Started")
    repo.get_vehicle = AsyncMock(side_effect=ConnectionError("store unavailable"))

    async def expire_all():
        repo.rollbacks += 1
        job.__dict__.pop("status", None)

    repo.rollback = expire_all
    service = StatusPropagationService(repo)

    status = await service.on_stop_transition(route.id, 0, "Completed", "drop", job.id)

    assert status == "Delivered"
    assert repo.rollbacks == 1
