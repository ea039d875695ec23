"""Tracking endpoints — location polling and ledger read-back for a route."""

import uuid
from fastapi import APIRouter, Depends, HTTPException

from db.repository import DispatchRepository
from dependencies import get_controller, get_repository, get_runtime, TrackingRuntime
from schemas import LocationPing, LedgerEntryResponse, TrackingHistoryResponse, TrackingSummaryResponse
from services.route_lifecycle import RouteLifecycleController

router = APIRouter()


@router.post("/routes/{route_id}/location")
async def post_route_location(
    route_id: uuid.UUID,
    data: LocationPing,
    repo: DispatchRepository = Depends(get_repository),
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Location ping for a route, attributed to the route's driver."""
    route = await repo.get_route(route_id)
    if not route:
        raise HTTPException(status_code=404, detail="Route not found")

    entry = await controller.record_location(
        route.driver_id,
        data.latitude,
        data.longitude,
        data.accuracy,
        speed=data.speed,
        heading=data.heading,
        route_id=route_id,
    )
    return {
        "tracked": entry is not None,
        "entry": LedgerEntryResponse.model_validate(entry) if entry else None,
    }


@router.get("/routes/{route_id}", response_model=TrackingSummaryResponse)
async def get_tracking_summary(route_id: uuid.UUID, runtime: TrackingRuntime = Depends(get_runtime)):
    summary = await runtime.ledger.summary(route_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="Route has no tracking record")
    return summary


@router.get("/routes/{route_id}/history", response_model=TrackingHistoryResponse)
async def get_tracking_history(route_id: uuid.UUID, runtime: TrackingRuntime = Depends(get_runtime)):
    """Full location and action history, in append order."""
    history = await runtime.ledger.history(route_id)
    if history is None:
        raise HTTPException(status_code=404, detail="Route has no tracking record")
    locations, actions = history
    return TrackingHistoryResponse(
        route_id=route_id,
        locations=[LedgerEntryResponse.model_validate(e) for e in locations],
        actions=[LedgerEntryResponse.model_validate(e) for e in actions],
    )
