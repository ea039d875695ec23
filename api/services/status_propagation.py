"""
Status Propagation — recompute TransportJob and Vehicle status after a stop moves.

Every recompute reads the current stop statuses and derives the result from
scratch, so running it twice gives the same answer and a stale job or vehicle
heals on the next run. Job updates are committed before the vehicle is
touched; a vehicle failure is logged and left for the next recompute.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from db.repository import DispatchRepository, as_uuid
from schemas import StopType, VehicleStatus
from services.status_rules import derive_job_status, derive_vehicle_status

logger = logging.getLogger(__name__)

PROPAGATING_STOP_TYPES = {StopType.PICKUP.value, StopType.DROP.value}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusPropagationService:
    def __init__(self, repo: DispatchRepository, clock: Callable[[], datetime] = _utcnow):
        self.repo = repo
        self._clock = clock

    async def on_stop_transition(
        self,
        route_id,
        stop_index: int,
        new_status: str,
        stop_type: str,
        transport_job_id,
    ) -> str | None:
        """
        Called after a stop transition is committed. Returns the job's new
        status, or None when the stop does not propagate.
        """
        if stop_type not in PROPAGATING_STOP_TYPES or transport_job_id is None:
            return None

        logger.debug(
            "Propagating stop %s of route %s (%s → %s) to job %s",
            stop_index, route_id, stop_type, new_status, transport_job_id,
        )
        job = await self.recompute_transport_job(transport_job_id)
        if job is None:
            return None

        # rollback below expires the job, read it first
        status, job_id, vehicle_id = job.status, job.id, job.vehicle_id
        if vehicle_id is not None:
            try:
                await self.recompute_vehicle(vehicle_id)
            except Exception:
                logger.exception(
                    "Vehicle %s not updated after job %s changed, will heal on next recompute",
                    vehicle_id, job_id,
                )
                await self.repo.rollback()
        return status

    async def recompute_transport_job(self, job_id):
        job = await self.repo.get_transport_job(job_id)
        if job is None:
            logger.warning("Transport job %s not found, nothing to recompute", job_id)
            return None

        stops = await self.repo.find_job_stops(job.id)
        status = derive_job_status(
            job.status,
            [s.status for s in stops if s.stop_type == StopType.PICKUP.value],
            [s.status for s in stops if s.stop_type == StopType.DROP.value],
        )
        if status != job.status:
            logger.info("🚚 Job %s: %s → %s", job.id, job.status, status)
            job.status = status
            job.status_changed_at = self._clock()
            await self.repo.commit()
        return job

    async def recompute_vehicle(self, vehicle_id):
        vehicle = await self.repo.get_vehicle(vehicle_id)
        if vehicle is None:
            logger.warning("Vehicle %s not found, nothing to recompute", vehicle_id)
            return None

        jobs = await self.repo.list_vehicle_jobs(vehicle.id)
        status = derive_vehicle_status(vehicle.status, [j.status for j in jobs])
        if status != vehicle.status:
            logger.info("🚗 Vehicle %s: %s → %s", vehicle.id, vehicle.status, status)
            vehicle.status = status
            if status == VehicleStatus.DELIVERED.value and vehicle.delivered_at is None:
                vehicle.delivered_at = self._clock()
            await self.repo.commit()
        return vehicle

    async def recompute_route(self, route_id) -> dict[str, dict[uuid.UUID, str | None]]:
        """Administrative re-run over every job touching a route, then their vehicles."""
        jobs = await self.repo.list_route_jobs(as_uuid(route_id))
        job_ids = {j.id for j in jobs}
        route = await self.repo.get_route(route_id)
        if route is not None:
            job_ids.update(as_uuid(s.transport_job_id) for s in route.stops if s.transport_job_id)

        result = {"transport_jobs": {}, "vehicles": {}}
        vehicle_ids = set()
        for job_id in sorted(job_ids, key=str):
            job = await self.recompute_transport_job(job_id)
            result["transport_jobs"][job_id] = job.status if job else None
            if job is not None and job.vehicle_id is not None:
                vehicle_ids.add(as_uuid(job.vehicle_id))

        for vehicle_id in sorted(vehicle_ids, key=str):
            vehicle = await self.recompute_vehicle(vehicle_id)
            result["vehicles"][vehicle_id] = vehicle.status if vehicle else None
        return result
