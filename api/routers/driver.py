"""Driver app endpoints — route lifecycle, stop actions and live location."""

import uuid
from fastapi import APIRouter, Depends

from dependencies import get_controller
from schemas import (
    RouteActionRequest, CompleteStopRequest, SkipStopRequest, StopPhotosRequest, UpdateStopRequest,
    DriverLocationUpdate, RouteResponse, LedgerEntryResponse,
)
from services.route_lifecycle import RouteLifecycleController

router = APIRouter()


def _location(data: RouteActionRequest | None) -> dict | None:
    if data is None or data.current_location is None:
        return None
    return data.current_location.model_dump()


# ── Route lifecycle ────────────────────────────────────────

@router.post("/{driver_id}/routes/{route_id}/start", response_model=RouteResponse)
async def start_route(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    data: RouteActionRequest | None = None,
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Driver starts a planned route. First pending stop becomes active."""
    return await controller.start_route(route_id, driver_id, _location(data))


@router.post("/{driver_id}/routes/{route_id}/stop", response_model=RouteResponse)
async def stop_route(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    data: RouteActionRequest | None = None,
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Pause a running route (break, end of shift)."""
    return await controller.stop_route(route_id, driver_id, _location(data))


@router.post("/{driver_id}/routes/{route_id}/resume", response_model=RouteResponse)
async def resume_route(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    data: RouteActionRequest | None = None,
    controller: RouteLifecycleController = Depends(get_controller),
):
    return await controller.resume_route(route_id, driver_id, _location(data))


@router.post("/{driver_id}/routes/{route_id}/complete", response_model=RouteResponse)
async def complete_route(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    data: RouteActionRequest | None = None,
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Finish the route. Frees the driver and truck, closes the tracking ledger."""
    return await controller.complete_route(route_id, driver_id, _location(data))


# ── Stops ──────────────────────────────────────────────────

@router.post("/{driver_id}/routes/{route_id}/stops/{stop_id}/complete", response_model=RouteResponse)
async def complete_stop(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    stop_id: uuid.UUID,
    data: CompleteStopRequest,
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Complete the active stop. Pickup and drop stops need a checklist."""
    return await controller.complete_stop(
        route_id,
        driver_id,
        stop_id,
        checklist=[i.model_dump(mode="json") for i in data.checklist] if data.checklist is not None else None,
        photos=[p.model_dump(mode="json") for p in data.photos] if data.photos is not None else None,
        notes=data.notes,
        location=_location(data),
    )


@router.patch("/{driver_id}/routes/{route_id}/stops/{stop_id}", response_model=RouteResponse)
async def update_stop(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    stop_id: uuid.UUID,
    data: UpdateStopRequest,
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Save checklist progress and notes on the active stop. Photos and status are untouched."""
    return await controller.update_stop(
        route_id,
        driver_id,
        stop_id,
        checklist=[i.model_dump(mode="json") for i in data.checklist] if data.checklist is not None else None,
        notes=data.notes,
        location=_location(data),
    )


@router.post("/{driver_id}/routes/{route_id}/stops/{stop_id}/skip", response_model=RouteResponse)
async def skip_stop(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    stop_id: uuid.UUID,
    data: SkipStopRequest,
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Skip the active pickup/drop stop. Cancels its transport job."""
    return await controller.skip_stop(route_id, driver_id, stop_id, data.reason, _location(data))


@router.post("/{driver_id}/routes/{route_id}/stops/{stop_id}/photos", response_model=RouteResponse)
async def add_stop_photos(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    stop_id: uuid.UUID,
    data: StopPhotosRequest,
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Attach already-uploaded photo urls to a stop."""
    return await controller.add_stop_photos(
        route_id, driver_id, stop_id,
        [p.model_dump(mode="json") for p in data.photos],
        _location(data),
    )


@router.delete("/{driver_id}/routes/{route_id}/stops/{stop_id}/photos/{photo_index}", response_model=RouteResponse)
async def remove_stop_photo(
    driver_id: uuid.UUID,
    route_id: uuid.UUID,
    stop_id: uuid.UUID,
    photo_index: int,
    controller: RouteLifecycleController = Depends(get_controller),
):
    return await controller.remove_stop_photo(route_id, driver_id, stop_id, photo_index)


# ── Location ───────────────────────────────────────────────

@router.patch("/{driver_id}/location")
async def update_location(
    driver_id: uuid.UUID,
    data: DriverLocationUpdate,
    controller: RouteLifecycleController = Depends(get_controller),
):
    """Called by the driver app every ~45s while on duty."""
    entry = await controller.record_location(
        driver_id,
        data.latitude,
        data.longitude,
        data.accuracy,
        speed=data.speed,
        heading=data.heading,
        route_id=data.route_id,
    )
    return {
        "status": "updated",
        "tracked": entry is not None,
        "entry": LedgerEntryResponse.model_validate(entry) if entry else None,
    }
