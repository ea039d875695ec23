"""Admin endpoints — re-run status propagation to heal stale jobs and vehicles."""

import uuid
from fastapi import APIRouter, Depends, HTTPException

from dependencies import get_propagation
from schemas import RecomputeResponse
from services.status_propagation import StatusPropagationService

router = APIRouter()


@router.post("/routes/{route_id}/recompute", response_model=RecomputeResponse)
async def recompute_route(
    route_id: uuid.UUID,
    propagation: StatusPropagationService = Depends(get_propagation),
):
    """Recompute every transport job on a route, then their vehicles."""
    return await propagation.recompute_route(route_id)


@router.post("/transport-jobs/{job_id}/recompute", response_model=RecomputeResponse)
async def recompute_transport_job(
    job_id: uuid.UUID,
    propagation: StatusPropagationService = Depends(get_propagation),
):
    job = await propagation.recompute_transport_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Transport job not found")

    vehicles = {}
    if job.vehicle_id is not None:
        vehicle = await propagation.recompute_vehicle(job.vehicle_id)
        vehicles[job.vehicle_id] = vehicle.status if vehicle else None
    return RecomputeResponse(transport_jobs={job.id: job.status}, vehicles=vehicles)
